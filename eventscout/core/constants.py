"""Application-wide constants for the EventScout MCP server.

Values here are fixed by protocol or by the shape of the pipeline. Anything an
operator may want to tune lives in Settings or in ConfigStore thresholds.
"""

# ========================================
# LLM Constants
# ========================================

MAX_RETRIES_DEFAULT = 2  # Output validation retries inside pydantic-ai
LLM_TEMPERATURE_DETERMINISTIC = 0.1  # Extraction and scoring

# Output token budgets (answer only, reasoning overhead is added on top)
PRIORITIZATION_TOKENS_PER_CANDIDATE = 60
PRIORITIZATION_BASE_TOKENS = 200
EXTRACTION_OUTPUT_TOKENS = 1500

# Finish reasons reported by OpenAI-compatible APIs when output is cut off
TRUNCATION_FINISH_REASONS = ("length", "max_tokens")

# ========================================
# Prioritization Weights
# ========================================

PRIORITY_WEIGHTS = {
    "is_event": 0.30,
    "has_agenda": 0.25,
    "has_speakers": 0.20,
    "is_recent": 0.15,
    "is_relevant": 0.10,
}
COUNTRY_RELEVANCE_BONUS = 0.05

# ========================================
# Extraction Constants
# ========================================

REGEX_FALLBACK_CONFIDENCE = 0.3
CACHED_EXTRACTION_METHOD = "cache"
MAX_PAGE_CHARS = 60000  # Combined text kept per event

# Sub-page path hints, most valuable first
SUBPAGE_PATH_KEYWORDS = [
    "speakers",
    "referenten",
    "sprecher",
    "presenters",
    "faculty",
    "keynote",
    "agenda",
    "programm",
    "programme",
    "program",
    "schedule",
    "zeitplan",
    "sessions",
    "workshops",
]

SUBPAGE_EXCLUDE_KEYWORDS = [
    "register",
    "registration",
    "anmeldung",
    "tickets",
    "sponsor",
    "exhibit",
    "privacy",
    "datenschutz",
    "terms",
    "agb",
    "impressum",
    "imprint",
    "cookie",
    "login",
]

# ========================================
# Host Reputation
# ========================================

TRUSTED_EVENT_HOST_HINTS = [
    "conference",
    "congress",
    "kongress",
    "summit",
    "forum",
    "konferenz",
    "tagung",
    "expo",
    "messe",
    "event",
]

LOW_VALUE_HOST_HINTS = [
    "reddit.",
    "facebook.",
    "twitter.",
    "x.com",
    "youtube.",
    "wikipedia.",
    "medium.com",
    "pinterest.",
]

# ========================================
# Network Constants
# ========================================

HTTP_OK = 200
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503
RATE_LIMIT_STATUS_CODES = (HTTP_TOO_MANY_REQUESTS,)

MAX_RESULTS_PER_PROVIDER = 10

# ========================================
# Security Constants
# ========================================

MAX_TOPIC_LENGTH = 200
MAX_URL_LENGTH = 2048
