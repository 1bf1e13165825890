"""Run monitoring for candlebt"""

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


class PerformanceMonitor:
    """Track finished backtest runs (duration, outcome, size)."""

    def __init__(self):
        self.runs: List[Dict[str, Any]] = []
        self.symbol_counts = defaultdict(int)
        self.start_time = datetime.now()
        self._lock = threading.Lock()

    def record_run(self, duration: float, status: str, symbol: str,
                   trades: int = 0, candles: int = 0):
        """
        Record a finished run.

        Args:
            duration: Run duration in seconds
            status: Terminal state (completed/cancelled/failed)
            symbol: Trading symbol
            trades: Number of completed trades
            candles: Number of candles processed
        """
        with self._lock:
            self.runs.append({
                'timestamp': datetime.now(),
                'duration': duration,
                'status': status,
                'symbol': symbol,
                'trades': trades,
                'candles': candles
            })
            self.symbol_counts[symbol] += 1

    def get_stats(self, last_n_minutes: Optional[int] = None) -> Dict[str, Any]:
        """
        Get run statistics.

        Args:
            last_n_minutes: Only include runs from last N minutes

        Returns:
            Dict with run metrics
        """
        with self._lock:
            runs = list(self.runs)
            top_symbols = dict(sorted(self.symbol_counts.items(), key=lambda x: x[1], reverse=True)[:5])

        if last_n_minutes:
            cutoff = datetime.now() - timedelta(minutes=last_n_minutes)
            runs = [r for r in runs if r['timestamp'] >= cutoff]

        uptime = (datetime.now() - self.start_time).total_seconds()
        if not runs:
            return {
                'total_runs': 0,
                'uptime_seconds': uptime
            }

        durations = [r['duration'] for r in runs]
        by_status = defaultdict(int)
        for r in runs:
            by_status[r['status']] += 1

        return {
            'total_runs': len(runs),
            'runs_by_status': dict(by_status),
            'avg_duration_ms': (sum(durations) / len(durations)) * 1000,
            'min_duration_ms': min(durations) * 1000,
            'max_duration_ms': max(durations) * 1000,
            'total_trades': sum(r['trades'] for r in runs),
            'total_candles': sum(r['candles'] for r in runs),
            'top_symbols': top_symbols,
            'uptime_seconds': uptime
        }

    def print_stats(self, last_n_minutes: Optional[int] = None):
        """Print formatted statistics."""
        stats = self.get_stats(last_n_minutes)
        timeframe = f"Last {last_n_minutes} minutes" if last_n_minutes else "All time"

        print("\n" + "=" * 60)
        print(f"BACKTEST RUN STATS - {timeframe}")
        print("=" * 60)
        print(f"Uptime: {stats['uptime_seconds'] / 3600:.1f} hours")

        if stats['total_runs'] > 0:
            print(f"\nRuns")
            print("-" * 60)
            print(f"  Total Runs: {stats['total_runs']}")
            for status, count in stats['runs_by_status'].items():
                print(f"  {status:10s}: {count}")

            print(f"\nDurations")
            print("-" * 60)
            print(f"  Average: {stats['avg_duration_ms']:.1f}ms")
            print(f"  Min/Max: {stats['min_duration_ms']:.1f}ms / {stats['max_duration_ms']:.1f}ms")
        else:
            print("\n  No runs recorded yet")

        print("=" * 60 + "\n")

    def reset(self):
        """Reset all statistics."""
        with self._lock:
            self.runs.clear()
            self.symbol_counts.clear()
            self.start_time = datetime.now()

    def get_recent_runs(self, n: int = 10) -> List[Dict[str, Any]]:
        """Get the N most recent runs."""
        with self._lock:
            return self.runs[-n:]


# Global monitor instance
monitor = PerformanceMonitor()
