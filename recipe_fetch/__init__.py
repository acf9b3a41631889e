"""Recipe Fetcher
Resilient async recipe scraping with per-domain circuit breaking, rate limiting and fallback
"""

__version__ = "0.1.0"

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .dedup import RequestDeduplicator, create_cache_key
from .exceptions import (
    CircuitOpenError,
    QueueTimeoutError,
    RecipeFetchError,
    ScrapeFailedError,
)
from .models import (
    CircuitState,
    ErrorCategory,
    ExtractionMethod,
    RecipeRecord,
    RecoveryStrategy,
    SiteConfig,
)
from .monitor import PerformanceTimer, ScrapingMonitor
from .orchestrator import RecipeScraper, ScrapeService
from .rate_limiter import DomainRateLimiter, RateLimiterRegistry
from .retry import classify_error, retry_with_backoff
from .site_config import SiteConfigRegistry
from .validator import should_fallback, validate_http_response, validate_recipe_data

__all__ = [
    "__version__",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "RequestDeduplicator",
    "create_cache_key",
    "CircuitOpenError",
    "QueueTimeoutError",
    "RecipeFetchError",
    "ScrapeFailedError",
    "CircuitState",
    "ErrorCategory",
    "ExtractionMethod",
    "RecipeRecord",
    "RecoveryStrategy",
    "SiteConfig",
    "PerformanceTimer",
    "ScrapingMonitor",
    "RecipeScraper",
    "ScrapeService",
    "DomainRateLimiter",
    "RateLimiterRegistry",
    "classify_error",
    "retry_with_backoff",
    "SiteConfigRegistry",
    "should_fallback",
    "validate_http_response",
    "validate_recipe_data",
]
