"""Results reporting and export.

Provides CSV export of trades, a JSON export mirroring BacktestResult (ISO-8601
timestamps throughout), equity curve CSV and a console/text summary.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import json
import logging

import pandas as pd

from .engine import BacktestResult
from .ledger import CompletedTrade
from .utils.helpers import format_duration, format_price, to_iso, to_ms


TRADE_CSV_COLUMNS = [
    "Entry Time",
    "Exit Time",
    "Symbol",
    "Side",
    "Quantity",
    "Entry Price",
    "Exit Price",
    "P&L ($)",
    "P&L (%)",
    "Duration (ms)",
]


def _iso(value) -> str:
    return to_iso(to_ms(value))


def trades_to_dataframe(trades: Sequence[CompletedTrade], symbol: str) -> pd.DataFrame:
    """One row per trade with the export column names."""
    rows = [
        [
            to_iso(t.entry_time),
            to_iso(t.exit_time),
            symbol,
            t.side.value,
            t.quantity,
            t.entry_price,
            t.exit_price,
            t.pnl,
            t.pnl_percent,
            t.duration,
        ]
        for t in trades
    ]
    return pd.DataFrame(rows, columns=TRADE_CSV_COLUMNS)


def trades_to_csv(trades: Sequence[CompletedTrade], symbol: str) -> str:
    """Render trades as CSV text (header line always present)."""
    return trades_to_dataframe(trades, symbol).to_csv(index=False, lineterminator="\n")


def result_to_dict(result: BacktestResult) -> dict:
    """JSON-ready dict mirroring BacktestResult, timestamps as ISO-8601 strings."""
    trades = []
    for trade in result.trades:
        data = trade.to_dict()
        data["entry_time"] = to_iso(trade.entry_time)
        data["exit_time"] = to_iso(trade.exit_time)
        trades.append(data)

    open_position = None
    if result.open_position is not None:
        position = result.open_position
        open_position = {
            "entry_time": to_iso(position.entry_time),
            "entry_price": position.entry_price,
            "side": position.side.value,
            "quantity": position.quantity
        }

    return {
        "strategy": result.strategy,
        "symbol": result.symbol,
        "start_date": _iso(result.start_date),
        "end_date": _iso(result.end_date),
        "granularity": result.granularity,
        "account": result.account.to_dict(),
        "metrics": result.metrics.to_dict(),
        "trades": trades,
        "equity_curve": [
            {"timestamp": to_iso(p.timestamp), "equity": p.equity} for p in result.equity_curve
        ],
        "drawdown_curve": [
            {"timestamp": to_iso(p.timestamp), "drawdown_percent": p.drawdown_percent}
            for p in result.drawdown_curve
        ],
        "open_position": open_position
    }


def result_to_json(result: BacktestResult, indent: Optional[int] = 2) -> str:
    return json.dumps(result_to_dict(result), indent=indent)


def format_summary(result: BacktestResult) -> List[str]:
    """Summary lines shared by the console output and the text file."""
    metrics = result.metrics
    account = result.account
    lines = [
        "=" * 70,
        "BACKTEST RESULTS SUMMARY",
        "=" * 70,
        f"Strategy: {result.strategy}",
        f"Symbol: {result.symbol}",
        f"Granularity: {result.granularity}",
        f"Period: {_iso(result.start_date)} to {_iso(result.end_date)}",
        f"Candles Processed: {result.candles_processed}",
        "",
        "TRADE STATISTICS",
        "-" * 70,
        f"Total Trades: {metrics.total_trades}",
        f"Winning Trades: {metrics.winning_trades}",
        f"Losing Trades: {metrics.losing_trades}",
        f"Win Rate: {metrics.win_rate * 100:.2f}%",
        f"Avg Trade Duration: {format_duration(metrics.avg_trade_duration)}",
        "",
        "PROFIT/LOSS",
        "-" * 70,
        f"Total P&L: ${format_price(metrics.total_pnl)} ({metrics.total_pnl_percent:.2f}%)",
        f"Avg Win: ${format_price(metrics.avg_win)}",
        f"Avg Loss: ${format_price(metrics.avg_loss)}",
        f"Largest Win: ${format_price(metrics.largest_win)}",
        f"Largest Loss: ${format_price(metrics.largest_loss)}",
        f"Profit Factor: {metrics.profit_factor:.2f}",
        f"Expectancy: ${format_price(metrics.expectancy)}",
        "",
        "RISK METRICS",
        "-" * 70,
        f"Max Drawdown: {metrics.max_drawdown:.2f}%",
        f"Sharpe Ratio: {metrics.sharpe_ratio:.2f}",
        "",
        "ACCOUNT BALANCE",
        "-" * 70,
        f"Starting Balance: ${format_price(account.starting_balance)}",
        f"Final Balance: ${format_price(account.balance)}",
        "=" * 70,
    ]
    if result.open_position is not None:
        position = result.open_position
        lines.insert(-1, f"Open Position: {position.side.value} x{position.quantity} @ {position.entry_price:,.2f}")
    return lines


class BacktestReporter:
    """Generates reports and exports backtest results."""

    def __init__(self, output_dir: str = "./backtest_results", logger: Optional[logging.Logger] = None):
        """Initialize reporter.

        Args:
            output_dir: Directory to save reports
            logger: Optional logger
        """
        self.output_dir = Path(output_dir)
        self.logger = logger or logging.getLogger(__name__)

    def save_results(
        self,
        result: BacktestResult,
        save_trades: bool = True,
        save_equity: bool = True,
        save_json: bool = True
    ) -> Dict[str, Path]:
        """Save backtest results to files.

        Args:
            result: Result of a completed run
            save_trades: Whether to save trades CSV
            save_equity: Whether to save equity curve CSV
            save_json: Whether to save the full JSON export

        Returns:
            Dictionary mapping file type to file path
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        saved_files = {}

        # Generate timestamp for unique filenames
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        prefix = f"{result.symbol}_{result.granularity}_{timestamp}"

        if save_trades:
            trades_path = self.output_dir / f"{prefix}_trades.csv"
            trades_path.write_text(trades_to_csv(result.trades, result.symbol))
            saved_files["trades"] = trades_path
            self.logger.info(f"Saved trades to: {trades_path}")

        if save_equity and result.equity_curve:
            equity_path = self._save_equity_csv(result, prefix)
            saved_files["equity"] = equity_path
            self.logger.info(f"Saved equity curve to: {equity_path}")

        if save_json:
            json_path = self.output_dir / f"{prefix}_result.json"
            json_path.write_text(result_to_json(result))
            saved_files["json"] = json_path
            self.logger.info(f"Saved JSON results to: {json_path}")

        summary_path = self.output_dir / f"{prefix}_summary.txt"
        summary_path.write_text("\n".join(format_summary(result)) + "\n")
        saved_files["summary"] = summary_path
        self.logger.info(f"Saved summary to: {summary_path}")

        return saved_files

    def _save_equity_csv(self, result: BacktestResult, prefix: str) -> Path:
        """Save equity and drawdown curves side by side."""
        df = pd.DataFrame({
            "timestamp": [to_iso(p.timestamp) for p in result.equity_curve],
            "equity": [p.equity for p in result.equity_curve],
            "drawdown_percent": [p.drawdown_percent for p in result.drawdown_curve],
        })

        filepath = self.output_dir / f"{prefix}_equity.csv"
        df.to_csv(filepath, index=False)
        return filepath

    def print_summary(self, result: BacktestResult):
        """Print summary to console."""
        print()
        for line in format_summary(result):
            print(line)
        print()
