"""Hard limits and heuristic thresholds for the reporting engine."""

# Row ceilings
HARD_ROW_LIMIT = 50_000
LARGE_LIMIT_WARNING = 10_000

# Naming
MAX_ALIAS_LENGTH = 64
ALIAS_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

# Performance warning thresholds
MAX_SELECTED_COLUMNS_WARNING = 50
MAX_MANUAL_JOINS_WARNING = 5
MAX_CONDITIONS_WARNING = 20
CARTESIAN_JOIN_WARNING = 2
INDEX_HINT_CONDITION_THRESHOLD = 3
RESOURCE_SCORE_WARNING = 100

# Complexity buckets: low < 10 <= medium < 25 <= high
COMPLEXITY_LOW_CEILING = 10
COMPLEXITY_MEDIUM_CEILING = 25

DEFAULT_MAX_CONDITION_DEPTH = 10
MAX_COMPUTED_EXPANSION_DEPTH = 10

DEFAULT_QUERY_TIMEOUT_SECONDS = 30
DEFAULT_CATALOG_CACHE_TTL_SECONDS = 3600

SENSITIVE_COLUMN_PATTERNS = ("password", "token", "secret", "key", "ssn", "credit_card")
INDEXED_COLUMN_NAMES = ("id", "uuid", "created_at", "updated_at")
