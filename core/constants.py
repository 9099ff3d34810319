"""
Application constants for Commit Stream.

Contains GitHub API endpoints, paging limits, and checkpoint format markers.
"""

# =============================================================================
# GitHub API Constants
# =============================================================================

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "CommitStream/1.0"

# The commits endpoint caps per_page at 100
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 100

RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

# Status codes the fetcher treats as retryable on the next poll pass
TRANSIENT_STATUS_CODES = frozenset({500, 502, 503, 504})
RATE_LIMIT_STATUS_CODES = frozenset({403, 429})

# =============================================================================
# Record Constants
# =============================================================================

UNKNOWN_AUTHOR = "unknown"

# =============================================================================
# Polling Defaults
# =============================================================================

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_WINDOW_SECONDS = 3600
DEFAULT_FETCH_TIMEOUT_SECONDS = 30
DEFAULT_MAX_BACKOFF_SECONDS = 60

# =============================================================================
# Checkpoint Constants
# =============================================================================

CHECKPOINT_FORMAT_VERSION = 1
DEFAULT_CHECKPOINT_KEY_PREFIX = "commit_source:checkpoint"
DEFAULT_CHECKPOINT_INTERVAL_SECONDS = 10

# =============================================================================
# Stream Sink Constants
# =============================================================================

DEFAULT_STREAM_KEY = "commits:stream"
MAX_STREAM_LEN = 100000  # Trim stream to prevent unbounded growth

__all__ = [
    "GITHUB_API_BASE",
    "GITHUB_API_VERSION",
    "USER_AGENT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "RATE_LIMIT_REMAINING_HEADER",
    "RATE_LIMIT_RESET_HEADER",
    "RETRY_AFTER_HEADER",
    "TRANSIENT_STATUS_CODES",
    "RATE_LIMIT_STATUS_CODES",
    "UNKNOWN_AUTHOR",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_MAX_WINDOW_SECONDS",
    "DEFAULT_FETCH_TIMEOUT_SECONDS",
    "DEFAULT_MAX_BACKOFF_SECONDS",
    "CHECKPOINT_FORMAT_VERSION",
    "DEFAULT_CHECKPOINT_KEY_PREFIX",
    "DEFAULT_CHECKPOINT_INTERVAL_SECONDS",
    "DEFAULT_STREAM_KEY",
    "MAX_STREAM_LEN",
]
