"""Data models and enums for the recipe fetch pipeline"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import (
    CIRCUIT_BREAKER_RESET_TIMEOUT,
    CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
    CIRCUIT_BREAKER_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT,
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_MIN_DELAY,
    DEFAULT_RATE_LIMIT_WINDOW,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_ATTEMPTS,
)


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


class ErrorCategory(Enum):
    """Failure categories for different handling strategies"""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    BLOCKED = "blocked"  # Bot detection / anti-scraping
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"  # 5xx
    INVALID_RESPONSE = "invalid_response"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


class RecoveryStrategy(Enum):
    """What to do after a categorized failure"""

    RETRY = "retry"  # Retry with same method
    RETRY_WITH_DELAY = "retry_with_delay"  # Retry after delay
    FALLBACK = "fallback"  # Try alternative method
    FAIL = "fail"  # Give up
    CIRCUIT_BREAK = "circuit_break"  # Stop hitting the domain


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ExtractionMethod(Enum):
    """Extraction methods, in the order the orchestrator may try them"""

    STANDARD = "standard"  # Plain HTTP fetch + field extraction
    ENHANCED = "enhanced"  # Browser-impersonating fetch + field extraction
    FALLBACK = "fallback"  # External prompt + schema extraction service


@dataclass(frozen=True)
class CircuitBreakerOptions:
    failure_threshold: int = CIRCUIT_BREAKER_THRESHOLD
    success_threshold: int = CIRCUIT_BREAKER_SUCCESS_THRESHOLD
    timeout: float = CIRCUIT_BREAKER_TIMEOUT
    reset_timeout: float = CIRCUIT_BREAKER_RESET_TIMEOUT


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Point-in-time view of one domain's breaker"""

    state: CircuitState
    failure_count: int
    success_count: int
    next_attempt_at: float
    last_failure_at: Optional[float]
    last_success_at: Optional[float]


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS
    window: float = DEFAULT_RATE_LIMIT_WINDOW
    min_delay: float = DEFAULT_RATE_LIMIT_MIN_DELAY


@dataclass(frozen=True)
class RateLimiterStatus:
    queue_length: int
    recent_requests: int
    is_processing: bool


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class SiteConfig:
    """Resolved operating parameters for one domain"""

    domain: str
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS
    rate_limit_window: float = DEFAULT_RATE_LIMIT_WINDOW
    rate_limit_min_delay: float = DEFAULT_RATE_LIMIT_MIN_DELAY
    use_circuit_breaker: bool = True
    circuit_breaker_threshold: int = CIRCUIT_BREAKER_THRESHOLD
    circuit_breaker_success_threshold: int = CIRCUIT_BREAKER_SUCCESS_THRESHOLD
    circuit_breaker_timeout: float = CIRCUIT_BREAKER_TIMEOUT
    circuit_breaker_reset_timeout: float = CIRCUIT_BREAKER_RESET_TIMEOUT
    preferred_method: ExtractionMethod = ExtractionMethod.STANDARD
    difficulty: Difficulty = Difficulty.MEDIUM
    requires_javascript: bool = False
    requires_special_handling: bool = False
    user_agent_rotation: bool = True
    notes: Optional[str] = None

    @property
    def rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_requests=self.rate_limit_max_requests,
            window=self.rate_limit_window,
            min_delay=self.rate_limit_min_delay,
        )

    @property
    def circuit_breaker_options(self) -> CircuitBreakerOptions:
        return CircuitBreakerOptions(
            failure_threshold=self.circuit_breaker_threshold,
            success_threshold=self.circuit_breaker_success_threshold,
            timeout=self.circuit_breaker_timeout,
            reset_timeout=self.circuit_breaker_reset_timeout,
        )

    @property
    def is_challenging(self) -> bool:
        return self.difficulty == Difficulty.HARD


@dataclass
class ErrorClassification:
    """Result of classifying a raw failure"""

    category: ErrorCategory
    message: str
    is_retryable: bool
    recovery_strategy: RecoveryStrategy
    suggested_delay: Optional[float] = None
    error: Optional[BaseException] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    score: int = 100


@dataclass
class FetchResponse:
    """Raw HTTP result handed from the fetcher to the validators"""

    url: str
    status: int
    headers: Dict[str, str]
    text: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass
class ScrapingAttempt:
    """One tracked attempt, finalized on success or failure"""

    url: str
    domain: str
    method: str
    started_at: float
    ended_at: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    error_category: Optional[str] = None
    validation_score: Optional[int] = None
    retry_count: int = 0
    circuit_state: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.ended_at is not None

    @property
    def duration(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at


@dataclass
class MethodStats:
    attempts: int = 0
    successes: int = 0

    @property
    def rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


@dataclass
class DomainMetrics:
    domain: str
    total_attempts: int
    success_count: int
    failure_count: int
    success_rate: float
    average_duration: float
    fastest_duration: float
    slowest_duration: float
    last_attempt: float
    last_success: Optional[float]
    last_failure: Optional[float]
    method_stats: Dict[str, MethodStats]
    common_errors: Dict[str, int]


@dataclass
class OverallMetrics:
    total_attempts: int
    success_count: int
    failure_count: int
    success_rate: float
    average_duration: float
    top_domains: List[Dict[str, Any]]
    method_stats: Dict[str, MethodStats]
    common_errors: Dict[str, int]


@dataclass
class RecipeRecord:
    """Extracted recipe returned to callers"""

    title: str
    ingredients: List[str]
    instructions: str
    source_url: str
    extraction_method: str
    domain: str
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    servings: Optional[int] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    validation_score: Optional[int] = None
    extracted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "ingredients": list(self.ingredients),
            "instructions": self.instructions,
            "prep_time": self.prep_time,
            "cook_time": self.cook_time,
            "servings": self.servings,
            "image_url": self.image_url,
            "description": self.description,
            "source_url": self.source_url,
            "extraction_method": self.extraction_method,
            "metadata": {
                "extraction_method": self.extraction_method,
                "domain": self.domain,
                "extracted_at": self.extracted_at,
                "validation_score": self.validation_score,
            },
        }
