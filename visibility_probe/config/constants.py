"""
Configuration constants for Visibility Probe.

This module contains global constants used across the application
to avoid tight coupling between modules.
"""

# Maximum prompt length sent to any answer or analysis model
# ~25k tokens at 4 chars/token average
MAX_PROMPT_LENGTH = 100_000

# Report shape defaults
DEFAULT_PROMPT_COUNT = 5
DEFAULT_RUNS_PER_PROMPT = 4
DEFAULT_MAX_CONCURRENT_PROMPTS = 3
DEFAULT_PROBE_TIMEOUT_SECONDS = 90.0
DEFAULT_SQLITE_DB_PATH = "./output/visibility.db"

# Cap for the top-sources query when the caller gives no limit
DEFAULT_TOP_SOURCES_LIMIT = 15

# Rank used in the visibility score when no run produced a rank
MIN_AVERAGE_RANK = 1

# Qualitative visibility levels accepted from the visibility analyzer
VISIBILITY_LEVELS = ("High", "Medium", "Low")

# Report lifecycle states
STATUS_GENERATING = "generating"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Stored when a report fails without a usable error message
UNKNOWN_ERROR_MESSAGE = "Unknown error"
