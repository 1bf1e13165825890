"""
Utility modules for candlebt.

This package contains utility functions and monitoring:
- helpers: Timestamp conversion and formatting
- logger: Structured logging system
- monitor: Run monitoring and statistics
"""

from candlebt.utils.helpers import (
    to_ms,
    from_ms,
    to_iso,
    parse_date,
    format_duration,
    format_price
)
from candlebt.utils.logger import setup_logger, log_backtest_event
from candlebt.utils.monitor import monitor, PerformanceMonitor

__all__ = [
    "to_ms",
    "from_ms",
    "to_iso",
    "parse_date",
    "format_duration",
    "format_price",
    "setup_logger",
    "log_backtest_event",
    "monitor",
    "PerformanceMonitor"
]
