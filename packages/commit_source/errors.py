"""
Exception hierarchy for the commit source.

Transient fetch failures are recovered inside the poll engine. Everything
else propagates to the host process.
"""

from typing import Optional


class CommitSourceError(Exception):
    """Base class for all commit source errors."""


class FetchError(CommitSourceError):
    """Remote API failure that retrying will not fix (bad token, unknown repo)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Network failure, timeout or server error. Retried on the next poll pass."""


class RateLimitedError(TransientFetchError):
    """
    The API refused the request because the rate limit is exhausted.

    retry_after carries the number of seconds until the limit resets, when
    the response told us.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class TranslationError(CommitSourceError):
    """A raw event could not be converted into a record."""


class SinkError(CommitSourceError):
    """The downstream sink rejected a record or watermark."""


class CheckpointError(CommitSourceError):
    """Checkpoint state is unusable: corrupt, out of order, or taken after a failure."""


class CursorRegressionError(CommitSourceError):
    """Attempt to move the cursor backwards."""


__all__ = [
    "CommitSourceError",
    "FetchError",
    "TransientFetchError",
    "RateLimitedError",
    "TranslationError",
    "SinkError",
    "CheckpointError",
    "CursorRegressionError",
]
