"""Per-domain error history and user-facing error reporting"""

from collections import deque
from typing import Any, Deque, Dict, List

from loguru import logger

from .config import CIRCUIT_BREAK_BLOCKED_STREAK, ERROR_HISTORY_LIMIT
from .models import ErrorCategory, ErrorClassification

USER_ERROR_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "Network connection issue. Please check your internet connection and try again.",
    ErrorCategory.TIMEOUT: "Request timed out. The website may be slow or unresponsive. Try again later.",
    ErrorCategory.RATE_LIMIT: "Too many requests. Please wait a moment before trying again.",
    ErrorCategory.BLOCKED: "Access blocked by the website. This site may have anti-bot protection. Try again later or import manually.",
    ErrorCategory.NOT_FOUND: "Recipe not found. Please check the URL and try again.",
    ErrorCategory.SERVER_ERROR: "The recipe website is experiencing issues. Please try again later.",
    ErrorCategory.INVALID_RESPONSE: "Received invalid response from website. The site may have changed its structure.",
    ErrorCategory.PARSE_ERROR: "Failed to parse recipe data. The website structure may not be supported.",
    ErrorCategory.VALIDATION_ERROR: "The extracted recipe data is incomplete or invalid. Try a different source or import manually.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred. Please try again or use a different import method.",
}

CATEGORY_STATUS: Dict[ErrorCategory, int] = {
    ErrorCategory.NETWORK: 502,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.BLOCKED: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.SERVER_ERROR: 503,
    ErrorCategory.INVALID_RESPONSE: 502,
    ErrorCategory.PARSE_ERROR: 422,
    ErrorCategory.VALIDATION_ERROR: 422,
    ErrorCategory.UNKNOWN: 500,
}


def format_user_error_message(classification: ErrorClassification) -> str:
    return USER_ERROR_MESSAGES.get(classification.category, classification.message)


def status_for_category(category: ErrorCategory) -> int:
    """HTTP-like status reported for a failure category"""
    return CATEGORY_STATUS.get(category, 500)


class ErrorRecoveryCoordinator:
    """
    Keeps the most recent classified errors per domain.

    A run of BLOCKED errors means the site is actively rejecting us, so the
    orchestrator uses `should_circuit_break` to stop hitting it.
    """

    def __init__(
        self,
        history_limit: int = ERROR_HISTORY_LIMIT,
        blocked_streak: int = CIRCUIT_BREAK_BLOCKED_STREAK,
    ):
        self.history_limit = history_limit
        self.blocked_streak = blocked_streak
        self._history: Dict[str, Deque[ErrorClassification]] = {}

    def record_error(self, domain: str, classification: ErrorClassification) -> None:
        history = self._history.get(domain)
        if history is None:
            history = deque(maxlen=self.history_limit)
            self._history[domain] = history
        history.append(classification)

    def should_circuit_break(self, domain: str) -> bool:
        history = self._history.get(domain)
        if not history or len(history) < self.blocked_streak:
            return False
        recent = list(history)[-self.blocked_streak:]
        return all(c.category == ErrorCategory.BLOCKED for c in recent)

    def error_stats(self, domain: str) -> Dict[str, Any]:
        history: List[ErrorClassification] = list(self._history.get(domain, ()))
        by_category: Dict[str, int] = {}
        for classification in history:
            key = classification.category.value
            by_category[key] = by_category.get(key, 0) + 1

        return {
            "total_errors": len(history),
            "errors_by_category": by_category,
            "recent_errors": history[-self.blocked_streak:],
            "should_circuit_break": self.should_circuit_break(domain),
        }

    def clear_history(self, domain: str) -> None:
        if self._history.pop(domain, None) is not None:
            logger.info(f"Cleared error history for {domain}")

    def domains_with_errors(self) -> List[str]:
        return list(self._history)
