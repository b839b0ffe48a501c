"""Global constants for LLKB.

Centralizes the numbers that are not user-configurable. Tunable thresholds
live in llkb.core.config and are read from config.yml.
"""

# =============================================================================
# Layout
# =============================================================================

DEFAULT_ROOT = ".artk/llkb"
"""Default knowledge base root, relative to the project directory."""

CONFIG_FILENAME = "config.yml"
"""Configuration file inside the root."""

HISTORY_DIRNAME = "history"
"""Directory holding the date-partitioned event log."""

PATTERNS_DIRNAME = "patterns"
"""Directory holding read-only pattern catalogues."""

LOCK_SUFFIX = ".lock"
"""Suffix appended to a collection filename to form its lock file."""

SCHEMA_VERSION = "1.0.0"
"""Version written into every collection file."""

# =============================================================================
# Confidence Model
# =============================================================================

CONFIDENCE_OCCURRENCE_SATURATION = 10
"""Occurrence count at which the base confidence term reaches 1.0."""

RECENCY_WINDOW_DAYS = 90.0
"""Days over which recency decays after the last success."""

RECENCY_MAX_PENALTY = 0.3
"""Largest recency penalty for entities that have succeeded before."""

UNPROVEN_WINDOW_DAYS = 30.0
"""Days over which recency decays for entities that never succeeded."""

UNPROVEN_MAX_PENALTY = 0.5
"""Largest recency penalty for entities that never succeeded."""

HUMAN_REVIEW_BOOST = 1.2
"""Multiplier applied to human-reviewed entities."""

LOW_CONFIDENCE_THRESHOLD = 0.4
"""Entities below this confidence need review."""

DECLINE_RATIO = 0.8
"""Current confidence below mean * ratio counts as declining."""

DECLINE_WINDOW = 30
"""Trailing confidence-history entries used for decline detection."""

MAX_CONFIDENCE_HISTORY_ENTRIES = 100
"""Confidence history entries kept per entity."""

CONFIDENCE_HISTORY_RETENTION_DAYS = 90
"""Confidence history entries older than this are dropped."""

TREND_CHANGE_THRESHOLD = 0.1
"""Change between first and last thirds that counts as a trend."""

# =============================================================================
# Analytics / Query
# =============================================================================

TOP_PERFORMERS_LIMIT = 5
"""Entries in each top-performers list."""

MIN_KEYWORD_RELEVANCE = 0.1
"""Query matches at or below this keyword relevance are dropped."""

ANALYTICS_FILE_VERSION = "1.0.0"
"""Version stamped into analytics.json."""

# =============================================================================
# Retention
# =============================================================================

LOW_SUCCESS_MIN_OCCURRENCES = 3
"""Occurrences a lesson needs before a low success rate can archive it."""
