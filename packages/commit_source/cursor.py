"""
Cursor.

The single piece of mutable progress state: the end of the last window whose
records have been emitted. Only ever moves forward.
"""

from datetime import datetime

from .errors import CursorRegressionError
from .utils import ensure_utc, to_epoch_millis


class Cursor:
    """Monotonic UTC timestamp marking how far the source has emitted."""

    def __init__(self, start: datetime):
        self._last_time = ensure_utc(start)

    @property
    def last_time(self) -> datetime:
        return self._last_time

    @property
    def millis(self) -> int:
        return to_epoch_millis(self._last_time)

    def advance(self, to: datetime) -> None:
        """
        Move the cursor forward.

        Raises:
            CursorRegressionError: If `to` is earlier than the current value.
        """
        to = ensure_utc(to)
        if to < self._last_time:
            raise CursorRegressionError(
                f"Cursor cannot move backwards from {self._last_time.isoformat()} "
                f"to {to.isoformat()}"
            )
        self._last_time = to

    def reset(self, to: datetime) -> None:
        """Overwrite the cursor unconditionally. Used when restoring a checkpoint."""
        self._last_time = ensure_utc(to)

    def __repr__(self) -> str:
        return f"Cursor({self._last_time.isoformat()})"
