"""
Time Utilities

The account core keeps every timestamp as integer milliseconds since the
epoch (0 meaning "never"). These helpers produce the current time in that
unit and render stored values for health reports and API responses.
"""

from datetime import datetime, timezone
from typing import Optional


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Args:
        dt: Datetime object (naive datetimes are treated as UTC)
        milliseconds: If True, return milliseconds; if False, return seconds

    Returns:
        int: Unix timestamp in seconds or milliseconds
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)
    return int(dt.timestamp())


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Examples:
        >>> current_utc_timestamp()
        1704110400

        >>> current_utc_timestamp(milliseconds=True)
        1704110400000
    """
    return datetime_to_timestamp(datetime.now(timezone.utc), milliseconds)


def current_utc_datetime() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Millisecond wall clock used by the fetch orchestrator and health reporter."""
    return current_utc_timestamp(milliseconds=True)


def ms_to_iso(timestamp_ms: int) -> Optional[str]:
    """
    Render an epoch-ms value as an ISO-8601 UTC string.

    Zero means "never" in the fetch state, so it renders as None.

    Example:
        >>> ms_to_iso(1704110400000)
        '2024-01-01T12:00:00.000Z'
        >>> ms_to_iso(0) is None
        True
    """
    if not timestamp_ms:
        return None
    seconds, millis = divmod(int(timestamp_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"
