"""
Time and payload helpers shared across the commit source.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive values are interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    """
    Convert a datetime to integer milliseconds since the Unix epoch.

    Args:
        value: Datetime to convert (naive values are treated as UTC).

    Returns:
        Milliseconds since 1970-01-01T00:00:00Z.
    """
    value = ensure_utc(value)
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def parse_iso_date(date_str: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO format date string to an aware UTC datetime.

    Args:
        date_str: ISO format date string (e.g., "2024-01-15T10:00:00Z").

    Returns:
        Parsed datetime or None if parsing fails.
    """
    if not date_str or not isinstance(date_str, str):
        return None

    try:
        # Handle 'Z' suffix
        if date_str.endswith("Z"):
            date_str = date_str[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(date_str))
    except ValueError:
        return None


def format_iso_z(value: datetime) -> str:
    """Format a datetime as the "YYYY-MM-DDTHH:MM:SSZ" form the GitHub API expects."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def safe_get(obj: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Safely get a nested value from a dictionary.

    Args:
        obj: Dictionary to traverse.
        *keys: Keys to follow.
        default: Default value if key not found.

    Returns:
        Value at the nested key path or default.
    """
    current = obj
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key)
        else:
            return default
        if current is None:
            return default
    return current
