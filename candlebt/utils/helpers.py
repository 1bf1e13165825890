"""Utility functions for candlebt"""

from datetime import datetime
from typing import Union
import pytz


def to_ms(value: Union[datetime, int, float]) -> int:
    """
    Convert a datetime (or an existing millisecond timestamp) to epoch milliseconds.

    Naive datetimes are interpreted as UTC.

    Args:
        value: datetime or epoch milliseconds

    Returns:
        Epoch milliseconds as int
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        return int(round(value.timestamp() * 1000))
    return int(value)


def from_ms(timestamp_ms: int) -> datetime:
    """
    Convert epoch milliseconds to an aware UTC datetime.

    Args:
        timestamp_ms: Epoch milliseconds

    Returns:
        datetime in UTC
    """
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=pytz.utc)


def to_iso(timestamp_ms: int) -> str:
    """
    Format epoch milliseconds as ISO-8601 UTC with millisecond precision.

    Example: 1704067200000 -> "2024-01-01T00:00:00.000Z"
    """
    dt = from_ms(timestamp_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_date(value: str) -> datetime:
    """
    Parse a YYYY-MM-DD or ISO-8601 string into a UTC datetime.

    Args:
        value: Date string

    Returns:
        Aware datetime in UTC
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def format_duration(milliseconds: float) -> str:
    """
    Format a duration in a human-readable way.

    Examples: "1d 2h", "3h 5m", "4m 10s", "7s"
    """
    seconds = int(milliseconds // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    elif hours > 0:
        return f"{hours}h {minutes % 60}m"
    elif minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_price(price: float) -> str:
    """Format price with two decimals and thousands separators."""
    return f"{price:,.2f}"
