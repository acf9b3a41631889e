from recipe_fetch.exceptions import BlockedError, ServerError
from recipe_fetch.models import ErrorCategory
from recipe_fetch.recovery import (
    ErrorRecoveryCoordinator,
    format_user_error_message,
    status_for_category,
)
from recipe_fetch.retry import classify_error


def _blocked():
    return classify_error(BlockedError("captcha", status=403))


def _server():
    return classify_error(ServerError("boom", status=500))


def test_blocked_streak_triggers_circuit_break():
    coordinator = ErrorRecoveryCoordinator(blocked_streak=5)
    for _ in range(4):
        coordinator.record_error("a.com", _blocked())
    assert not coordinator.should_circuit_break("a.com")

    coordinator.record_error("a.com", _blocked())
    assert coordinator.should_circuit_break("a.com")


def test_interrupted_streak_does_not_break():
    coordinator = ErrorRecoveryCoordinator(blocked_streak=3)
    coordinator.record_error("a.com", _blocked())
    coordinator.record_error("a.com", _blocked())
    coordinator.record_error("a.com", _server())
    coordinator.record_error("a.com", _blocked())
    assert not coordinator.should_circuit_break("a.com")


def test_history_is_bounded_and_per_domain():
    coordinator = ErrorRecoveryCoordinator(history_limit=3)
    for _ in range(10):
        coordinator.record_error("a.com", _server())
    coordinator.record_error("b.com", _blocked())

    stats = coordinator.error_stats("a.com")
    assert stats["total_errors"] == 3
    assert stats["errors_by_category"] == {"server_error": 3}
    assert sorted(coordinator.domains_with_errors()) == ["a.com", "b.com"]

    coordinator.clear_history("a.com")
    assert coordinator.error_stats("a.com")["total_errors"] == 0
    assert coordinator.domains_with_errors() == ["b.com"]


def test_user_messages_and_statuses():
    assert "anti-bot" in format_user_error_message(_blocked())
    assert status_for_category(ErrorCategory.BLOCKED) == 403
    assert status_for_category(ErrorCategory.NOT_FOUND) == 404
    assert status_for_category(ErrorCategory.TIMEOUT) == 504
    assert status_for_category(ErrorCategory.SERVER_ERROR) == 503
