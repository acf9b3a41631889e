"""Error classification and retry logic with exponential backoff"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

import httpx
from curl_cffi import CurlError
from loguru import logger

from .config import (
    INITIAL_BACKOFF,
    JITTER_MAX,
    MAX_BACKOFF,
    NETWORK_RETRY_DELAY,
    RATE_LIMIT_RETRY_DELAY,
    SERVER_ERROR_RETRY_DELAY,
    TIMEOUT_RETRY_DELAY,
    UNKNOWN_RETRY_DELAY,
)
from .exceptions import (
    BlockedError,
    CircuitOpenError,
    FetchError,
    FetchTimeoutError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    ParseError,
    QueueClearedError,
    QueueTimeoutError,
    RateLimitError,
    RecipeValidationError,
    ServerError,
)
from .models import ErrorCategory, ErrorClassification, RecoveryStrategy

# curl error code for CURLE_OPERATION_TIMEDOUT
CURL_TIMEOUT_CODE = 28


def _network(error, context) -> ErrorClassification:
    return ErrorClassification(
        category=ErrorCategory.NETWORK,
        message="Network connectivity issue",
        is_retryable=True,
        recovery_strategy=RecoveryStrategy.RETRY_WITH_DELAY,
        suggested_delay=NETWORK_RETRY_DELAY,
        error=error,
        context=context,
    )


def _timeout(error, context) -> ErrorClassification:
    attempt = context.get("attempt") or 0
    return ErrorClassification(
        category=ErrorCategory.TIMEOUT,
        message="Request timed out",
        is_retryable=True,
        recovery_strategy=(
            RecoveryStrategy.FALLBACK if attempt > 2 else RecoveryStrategy.RETRY_WITH_DELAY
        ),
        suggested_delay=TIMEOUT_RETRY_DELAY,
        error=error,
        context=context,
    )


def _rate_limit(error, context, retry_after: Optional[float] = None) -> ErrorClassification:
    return ErrorClassification(
        category=ErrorCategory.RATE_LIMIT,
        message="Rate limited by server",
        is_retryable=True,
        recovery_strategy=RecoveryStrategy.RETRY_WITH_DELAY,
        suggested_delay=retry_after if retry_after else RATE_LIMIT_RETRY_DELAY,
        error=error,
        context=context,
    )


def _blocked(error, context) -> ErrorClassification:
    return ErrorClassification(
        category=ErrorCategory.BLOCKED,
        message="Request blocked by anti-bot measures",
        is_retryable=False,
        recovery_strategy=RecoveryStrategy.FALLBACK,
        error=error,
        context=context,
    )


def _not_found(error, context) -> ErrorClassification:
    return ErrorClassification(
        category=ErrorCategory.NOT_FOUND,
        message="Resource not found (404)",
        is_retryable=False,
        recovery_strategy=RecoveryStrategy.FAIL,
        error=error,
        context=context,
    )


def _server_error(error, context) -> ErrorClassification:
    return ErrorClassification(
        category=ErrorCategory.SERVER_ERROR,
        message="Server error (5xx)",
        is_retryable=True,
        recovery_strategy=RecoveryStrategy.RETRY_WITH_DELAY,
        suggested_delay=SERVER_ERROR_RETRY_DELAY,
        error=error,
        context=context,
    )


def _non_retryable(category: ErrorCategory, message: str):
    def build(error, context) -> ErrorClassification:
        return ErrorClassification(
            category=category,
            message=message,
            is_retryable=False,
            recovery_strategy=RecoveryStrategy.FALLBACK,
            error=error,
            context=context,
        )

    return build


_invalid = _non_retryable(ErrorCategory.INVALID_RESPONSE, "Invalid or unexpected response")
_parse = _non_retryable(ErrorCategory.PARSE_ERROR, "Failed to parse response")
_validation = _non_retryable(ErrorCategory.VALIDATION_ERROR, "Data validation failed")


def _classify_status(status: int, error, context) -> Optional[ErrorClassification]:
    if status == 429:
        return _rate_limit(error, context, getattr(error, "retry_after", None))
    if status in (401, 403, 451):
        return _blocked(error, context)
    if status in (404, 410):
        return _not_found(error, context)
    if status >= 500:
        return _server_error(error, context)
    if status >= 400:
        return _invalid(error, context)
    return None


def _classify_message(error: BaseException, context) -> ErrorClassification:
    """Substring heuristics for errors coming from opaque third-party calls"""
    text = str(error).lower()
    name = type(error).__name__

    if (
        "network" in text
        or "fetch failed" in text
        or "connection" in text
        or name == "NetworkError"
    ):
        return _network(error, context)
    if "timeout" in text or "timed out" in text or name in ("AbortError", "TimeoutError"):
        return _timeout(error, context)
    if "rate limit" in text or "too many requests" in text or "429" in text:
        return _rate_limit(error, context)
    if any(
        token in text
        for token in ("blocked", "captcha", "cloudflare", "access denied", "forbidden", "403")
    ):
        return _blocked(error, context)
    if "not found" in text or "404" in text:
        return _not_found(error, context)
    if any(
        token in text
        for token in (
            "500",
            "502",
            "503",
            "504",
            "internal server error",
            "bad gateway",
            "service unavailable",
        )
    ):
        return _server_error(error, context)
    if "invalid" in text or "unexpected" in text or "malformed" in text:
        return _invalid(error, context)
    if "parse" in text or "json" in text or "syntax" in text:
        return _parse(error, context)
    if "validation" in text or "missing" in text or "empty" in text:
        return _validation(error, context)

    return ErrorClassification(
        category=ErrorCategory.UNKNOWN,
        message=str(error) or "Unknown error occurred",
        is_retryable=True,
        recovery_strategy=RecoveryStrategy.RETRY,
        suggested_delay=UNKNOWN_RETRY_DELAY,
        error=error,
        context=context,
    )


def classify_error(
    error: BaseException,
    *,
    attempt: Optional[int] = None,
    url: Optional[str] = None,
    domain: Optional[str] = None,
) -> ErrorClassification:
    """Classify error for appropriate handling"""
    context = {"attempt": attempt, "url": url, "domain": domain}

    if isinstance(error, CircuitOpenError):
        return ErrorClassification(
            category=ErrorCategory.SERVER_ERROR,
            message=f"Circuit breaker open for {error.domain}",
            is_retryable=False,
            recovery_strategy=RecoveryStrategy.CIRCUIT_BREAK,
            suggested_delay=error.remaining,
            error=error,
            context=context,
        )
    if isinstance(error, QueueTimeoutError):
        return ErrorClassification(
            category=ErrorCategory.TIMEOUT,
            message="Request waited too long in the rate limiter queue",
            is_retryable=False,
            recovery_strategy=RecoveryStrategy.FALLBACK,
            error=error,
            context=context,
        )
    if isinstance(error, QueueClearedError):
        return ErrorClassification(
            category=ErrorCategory.UNKNOWN,
            message="Request dropped from the rate limiter queue",
            is_retryable=False,
            recovery_strategy=RecoveryStrategy.FAIL,
            error=error,
            context=context,
        )

    # Typed errors from our own fetch/validation layer
    if isinstance(error, RateLimitError):
        return _rate_limit(error, context, error.retry_after)
    if isinstance(error, BlockedError):
        return _blocked(error, context)
    if isinstance(error, NotFoundError):
        return _not_found(error, context)
    if isinstance(error, ServerError):
        return _server_error(error, context)
    if isinstance(error, FetchTimeoutError):
        return _timeout(error, context)
    if isinstance(error, NetworkError):
        return _network(error, context)
    if isinstance(error, InvalidResponseError):
        return _invalid(error, context)
    if isinstance(error, ParseError):
        return _parse(error, context)
    if isinstance(error, RecipeValidationError):
        return _validation(error, context)
    if isinstance(error, FetchError) and error.status:
        by_status = _classify_status(error.status, error, context)
        if by_status is not None:
            return by_status

    # Library errors
    if isinstance(error, httpx.HTTPStatusError):
        by_status = _classify_status(error.response.status_code, error, context)
        if by_status is not None:
            return by_status
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return _timeout(error, context)
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return _network(error, context)
    if isinstance(error, CurlError):
        if getattr(error, "code", None) == CURL_TIMEOUT_CODE:
            return _timeout(error, context)
        return _network(error, context)

    return _classify_message(error, context)


def compute_backoff(
    attempt: int,
    classification: ErrorClassification,
    base_delay: float = INITIAL_BACKOFF,
    max_delay: float = MAX_BACKOFF,
    jitter: float = JITTER_MAX,
    rng: Optional[random.Random] = None,
) -> float:
    """min(suggested or base * 2^(attempt-1), max) plus uniform jitter"""
    delay = classification.suggested_delay
    if delay is None:
        delay = base_delay * (2 ** (attempt - 1))
    delay = min(delay, max_delay)
    return delay + (rng or random).uniform(0, jitter)


async def retry_with_backoff(
    func: Callable[..., Awaitable],
    *args,
    max_attempts: int = 3,
    base_delay: float = INITIAL_BACKOFF,
    max_delay: float = MAX_BACKOFF,
    jitter: float = JITTER_MAX,
    on_retry: Optional[Callable[[int, ErrorClassification], Awaitable[None]]] = None,
    context: Optional[dict] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    **kwargs,
):
    """
    Execute function with exponential backoff retry logic.

    Args:
        func: Async function to execute
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry when no delay is suggested
        max_delay: Upper bound for the delay (before jitter)
        jitter: Maximum random seconds added to each delay
        on_retry: Optional callback awaited before each retry: on_retry(attempt, classification)
        context: url/domain passed through to the classifier
        sleep: Async sleep used between attempts
        rng: Random source for jitter

    Raises:
        The original exception of the last attempt.
    """
    context = context or {}
    max_attempts = max(1, max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            classification = classify_error(
                e,
                attempt=attempt,
                url=context.get("url"),
                domain=context.get("domain"),
            )
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed "
                f"[{classification.category.value}]: {e}"
            )

            if attempt >= max_attempts:
                logger.error(f"Failed after {max_attempts} attempts: {e}")
                raise
            if not classification.is_retryable:
                logger.info("Error not retryable, giving up")
                raise
            if classification.recovery_strategy == RecoveryStrategy.FAIL:
                logger.info("Recovery strategy is FAIL, giving up")
                raise

            sleep_time = compute_backoff(
                attempt, classification, base_delay, max_delay, jitter, rng
            )
            logger.info(f"   Retrying in {sleep_time:.1f}s...")

            if on_retry:
                await on_retry(attempt, classification)

            await sleep(sleep_time)
        else:
            if attempt > 1:
                logger.success(f"Recovered after {attempt - 1} retries")
            return result
