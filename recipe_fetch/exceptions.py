"""Custom exception classes for the recipe fetch pipeline"""

from typing import Any, Dict, Optional

from .models import ErrorCategory, ValidationResult


class RecipeFetchError(Exception):
    """Base exception for pipeline errors"""

    pass


class FetchError(RecipeFetchError):
    """Raised when a page could not be fetched or the response is unusable"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.status = status
        self.url = url
        super().__init__(message)


class NetworkError(FetchError):
    """Raised on connection-level failures (DNS, reset, TLS)"""

    pass


class FetchTimeoutError(FetchError):
    """Raised when a fetch exceeds the per-domain timeout"""

    pass


class RateLimitError(FetchError):
    """Raised when the site answers 429 or a rate-limit page"""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        status: Optional[int] = 429,
        url: Optional[str] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status=status, url=url)


class BlockedError(FetchError):
    """Raised when the site serves an anti-bot / access denied page"""

    pass


class NotFoundError(FetchError):
    """Raised on 404"""

    pass


class ServerError(FetchError):
    """Raised on 5xx responses"""

    pass


class InvalidResponseError(FetchError):
    """Raised when the response fails HTTP/content validation"""

    def __init__(
        self,
        message: str,
        validation: Optional[ValidationResult] = None,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.validation = validation
        super().__init__(message, status=status, url=url)


class ParseError(RecipeFetchError):
    """Raised when recipe fields could not be extracted"""

    pass


class RecipeValidationError(RecipeFetchError):
    """Raised when an extracted recipe fails validation"""

    def __init__(self, message: str, validation: Optional[ValidationResult] = None):
        self.validation = validation
        super().__init__(message)


class CircuitOpenError(RecipeFetchError):
    """Raised when circuit breaker is open"""

    def __init__(
        self,
        domain: str,
        remaining: float,
        failures: int = 0,
        reason: Optional[str] = None,
    ):
        self.domain = domain
        self.remaining = max(0.0, remaining)
        self.failures = failures
        self.reason = reason or f"Too many failures ({failures})"
        super().__init__(
            f"Circuit breaker OPEN for {domain}. "
            f"{self.reason}. "
            f"Retry in {self.remaining:.0f}s."
        )


class QueueTimeoutError(RecipeFetchError):
    """Raised when a request waits in the rate limiter queue too long"""

    def __init__(self, domain: str, waited: float):
        self.domain = domain
        self.waited = waited
        super().__init__(
            f"Request timeout: too long in queue for {domain} ({waited:.0f}s)"
        )


class QueueClearedError(RecipeFetchError):
    """Raised for queued requests dropped by clear_queue()/close()"""

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"Queue cleared for {domain}")


class FallbackUnavailableError(RecipeFetchError):
    """Raised when the fallback extraction service is not configured"""

    pass


class ScrapeFailedError(RecipeFetchError):
    """
    Final structured failure surfaced to callers.

    `message` is user-facing, `details` is technical.
    """

    def __init__(
        self,
        message: str,
        details: str,
        category: ErrorCategory,
        domain: str,
        url: str,
        status: int,
    ):
        self.message = message
        self.details = details
        self.category = category
        self.domain = domain
        self.url = url
        self.status = status
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "details": self.details,
            "category": self.category.value,
            "domain": self.domain,
            "url": self.url,
            "status": self.status,
        }
