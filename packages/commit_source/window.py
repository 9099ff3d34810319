"""
Window Planner.

Derives the next fetch interval from the cursor. Pure function, no I/O.
"""

from datetime import datetime, timedelta

from .models import Window
from .utils import ensure_utc


def next_window(cursor: datetime, max_width: timedelta, now: datetime) -> Window:
    """
    Plan the next fetch window.

    The window starts at the cursor and ends at whichever comes first:
    cursor + max_width, or now. A cursor that is ahead of now (clock skew)
    yields an empty window at the cursor instead of an inverted one.

    Args:
        cursor: Last time fully emitted.
        max_width: Upper bound on window width; must be positive.
        now: Current wall-clock time.

    Returns:
        Window with since <= until, until - since <= max_width, until <= max(now, since).

    Raises:
        ValueError: If max_width is not positive.
    """
    if max_width <= timedelta(0):
        raise ValueError(f"max_width must be positive, got {max_width}")

    since = ensure_utc(cursor)
    until = min(since + max_width, ensure_utc(now))
    if until < since:
        until = since
    return Window(since=since, until=until)


__all__ = ["next_window"]
