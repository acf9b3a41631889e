"""Configuration constants for the recipe fetch pipeline"""

# Request defaults (seconds)
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_RETRY_ATTEMPTS = 3
MAX_HTML_BYTES = 1_000_000

# Retry configuration
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0
JITTER_MAX = 1.0

# Suggested delays per error category (seconds)
NETWORK_RETRY_DELAY = 2.0
TIMEOUT_RETRY_DELAY = 3.0
RATE_LIMIT_RETRY_DELAY = 10.0
SERVER_ERROR_RETRY_DELAY = 5.0
UNKNOWN_RETRY_DELAY = 1.0

# Circuit breaker configuration
CIRCUIT_BREAKER_THRESHOLD = 5  # Failures before opening circuit
CIRCUIT_BREAKER_SUCCESS_THRESHOLD = 2  # Half-open successes before closing
CIRCUIT_BREAKER_TIMEOUT = 60.0  # 1 minute before a trial request
CIRCUIT_BREAKER_RESET_TIMEOUT = 300.0  # 5 minutes quiet resets failure count

# Rate limiting defaults
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 10
DEFAULT_RATE_LIMIT_WINDOW = 60.0
DEFAULT_RATE_LIMIT_MIN_DELAY = 1.0
MAX_QUEUE_WAIT = 300.0  # 5 minutes in queue before rejection

# Deduplication cache
DEFAULT_CACHE_TTL = 300.0
CACHE_CLEANUP_INTERVAL = 60.0

# Validation thresholds
HTTP_MIN_SCORE = 30
RECIPE_MIN_SCORE = 40
FALLBACK_SCORE_THRESHOLD = 50
MIN_HTML_LENGTH = 500
MIN_INSTRUCTIONS_LENGTH = 50
MIN_INGREDIENT_COUNT = 3
MAX_INGREDIENT_LENGTH = 200

# Monitoring
MONITOR_MAX_ATTEMPTS = 1000
ERROR_HISTORY_LIMIT = 20
CIRCUIT_BREAK_BLOCKED_STREAK = 5

# Logging
DEFAULT_LOG_FILE = "logs/recipe_fetch.log"
LOG_ROTATION = "50 MB"
LOG_RETENTION = "14 days"

# Browser impersonation per extraction method (curl_cffi targets)
STANDARD_IMPERSONATE = None
ENHANCED_IMPERSONATE = "chrome"

# External services
GROQ_API_KEY_ENV = "GROQ_API_KEY"
GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
GROQ_MODEL = "llama-3.3-70b-versatile"
FIRECRAWL_API_KEY_ENV = "FIRECRAWL_API_KEY"
FIRECRAWL_API_URL = "https://api.firecrawl.dev/v1/scrape"
EXTERNAL_SERVICE_TIMEOUT = 60.0

# User agents
DESKTOP_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]
MOBILE_USER_AGENTS = [
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.6099.43 Mobile Safari/537.36",
]

DEFAULT_FETCH_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Referer": "https://www.google.com/",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "cross-site",
    "Sec-Fetch-User": "?1",
}
