"""Centralized constants for Chronicle."""

# Caches
PROJECT_CACHE_TTL_SECONDS = 300
DUPLICATE_CACHE_TTL_SECONDS = 300
DUPLICATE_CACHE_MAX_ENTRIES = 1000
DUPLICATE_CACHE_EVICT_COUNT = 100

# Duplicate detection
DUPLICATE_SIMILARITY_THRESHOLD = 0.80
DUPLICATE_TIME_WINDOW_DAYS = 7
DUPLICATE_FETCH_LIMIT = 100
SYNONYM_BOOST = 0.15
CACHE_KEY_TEXT_LENGTH = 50

# Significance
SIGNIFICANCE_THRESHOLD = 0.5
DEFAULT_TASK_CONFIDENCE = 0.8

# Project resolution
FUZZY_MIN_TEXT_LENGTH = 50
FUZZY_MIN_TOKEN_LENGTH = 4
FUZZY_MATCH_THRESHOLD = 0.5
PROJECT_EXCERPT_LENGTH = 200
PROJECT_SUGGESTION_LIMIT = 10
PROJECT_SUGGESTION_MIN_CONFIDENCE = 0.7

# Classification
DEFAULT_CLASSIFIER_MODEL = "claude-haiku-4-5"
DEFAULT_CLASSIFIER_MAX_TOKENS = 2000
MAX_NARRATIVE_BULLETS = 5
