"""Entry point for running a backtest as a module.

Usage:
    python -m candlebt --symbol BTC-USD --granularity ONE_HOUR --start 2024-01-01 --end 2024-03-01
"""

from .cli import main

if __name__ == "__main__":
    exit(main())
