"""Candle granularities and interval arithmetic.

The market data provider accepts both singular and plural interval names
(``FIVE_MINUTE`` / ``FIVE_MINUTES``). Unrecognized names fall back to one hour.
"""

from enum import Enum
from typing import Union


MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
YEAR_MS = 365 * DAY_MS

DEFAULT_INTERVAL_MS = HOUR_MS


class Granularity(str, Enum):
    """Canonical granularity names sent to the provider."""

    ONE_MINUTE = "ONE_MINUTE"
    FIVE_MINUTES = "FIVE_MINUTES"
    FIFTEEN_MINUTES = "FIFTEEN_MINUTES"
    THIRTY_MINUTES = "THIRTY_MINUTES"
    ONE_HOUR = "ONE_HOUR"
    TWO_HOURS = "TWO_HOURS"
    FOUR_HOURS = "FOUR_HOURS"
    SIX_HOURS = "SIX_HOURS"
    ONE_DAY = "ONE_DAY"


INTERVALS_MS = {
    "ONE_MINUTE": MINUTE_MS,
    "FIVE_MINUTE": 5 * MINUTE_MS,
    "FIVE_MINUTES": 5 * MINUTE_MS,
    "FIFTEEN_MINUTE": 15 * MINUTE_MS,
    "FIFTEEN_MINUTES": 15 * MINUTE_MS,
    "THIRTY_MINUTE": 30 * MINUTE_MS,
    "THIRTY_MINUTES": 30 * MINUTE_MS,
    "ONE_HOUR": HOUR_MS,
    "TWO_HOUR": 2 * HOUR_MS,
    "TWO_HOURS": 2 * HOUR_MS,
    "FOUR_HOUR": 4 * HOUR_MS,
    "FOUR_HOURS": 4 * HOUR_MS,
    "SIX_HOUR": 6 * HOUR_MS,
    "SIX_HOURS": 6 * HOUR_MS,
    "ONE_DAY": DAY_MS,
}


def granularity_name(granularity: Union[str, Granularity]) -> str:
    """Return the wire name for a granularity (enum member or raw string)."""
    if isinstance(granularity, Granularity):
        return granularity.value
    return str(granularity).strip().upper()


def interval_ms(granularity: Union[str, Granularity]) -> int:
    """Convert a granularity to its interval in milliseconds.

    Args:
        granularity: Granularity name, singular or plural form

    Returns:
        Interval length in milliseconds (one hour if unrecognized)
    """
    return INTERVALS_MS.get(granularity_name(granularity), DEFAULT_INTERVAL_MS)


def periods_per_year(granularity: Union[str, Granularity]) -> float:
    """Number of candles of this granularity in a 365-day year.

    Used to annualize per-candle statistics. Markets are assumed to trade
    around the clock.
    """
    return YEAR_MS / interval_ms(granularity)


def align_down(timestamp_ms: int, step_ms: int) -> int:
    """Align a timestamp down to the previous interval boundary."""
    return (int(timestamp_ms) // step_ms) * step_ms


def align_up(timestamp_ms: int, step_ms: int) -> int:
    """Align a timestamp up to the next interval boundary."""
    return -(-int(timestamp_ms) // step_ms) * step_ms


def candle_count(start_ms: int, end_ms: int, step_ms: int) -> int:
    """Number of candles in the inclusive aligned range [start_ms, end_ms]."""
    if end_ms < start_ms:
        return 0
    return (end_ms - start_ms) // step_ms + 1
