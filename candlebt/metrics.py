"""Performance metrics derived from a finished run.

Pure reductions over the completed trades and the equity/drawdown curves.
Every metric is a finite number, including for runs without trades.
"""

from dataclasses import dataclass, asdict
from typing import Sequence

import numpy as np

from .granularity import periods_per_year
from .ledger import AccountSnapshot, CompletedTrade


@dataclass(frozen=True)
class PerformanceMetrics:
    """Aggregate statistics. win_rate is a fraction in [0, 1]; percentages are in percent."""

    total_trades: int = 0
    profitable_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_return: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_trade_duration: float = 0.0
    expectancy: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def equity_returns(equities: Sequence[float]) -> np.ndarray:
    """Per-candle equity changes in percent, skipping steps from zero equity."""
    values = np.asarray(equities, dtype="float64")
    if len(values) < 2:
        return np.empty(0)
    previous, current = values[:-1], values[1:]
    mask = previous != 0
    return (current[mask] - previous[mask]) / previous[mask] * 100


def sharpe_ratio(equities: Sequence[float], granularity: str) -> float:
    """Annualized Sharpe ratio of per-candle equity returns (zero risk-free rate).

    Uses the population standard deviation and sqrt(periods per year) for the
    granularity. Returns 0 with fewer than two returns or zero volatility.
    """
    returns = equity_returns(equities)
    if len(returns) < 2:
        return 0.0
    std = returns.std()
    if std == 0 or not np.isfinite(std):
        return 0.0
    return float(returns.mean() / std * np.sqrt(periods_per_year(granularity)))


def max_drawdown(drawdowns: Sequence[float]) -> float:
    if len(drawdowns) == 0:
        return 0.0
    return float(max(drawdowns))


def compute_metrics(
    trades: Sequence[CompletedTrade],
    equities: Sequence[float],
    drawdowns: Sequence[float],
    account: AccountSnapshot,
    granularity: str
) -> PerformanceMetrics:
    """Reduce a finished run into PerformanceMetrics.

    Args:
        trades: Completed trades in order
        equities: Equity value per processed candle
        drawdowns: Drawdown percent per processed candle
        account: Final account snapshot
        granularity: Granularity name, used to annualize the Sharpe ratio

    Returns:
        PerformanceMetrics
    """
    pnls = np.asarray([t.pnl for t in trades], dtype="float64")
    wins = pnls[pnls > 0]
    losses = pnls[pnls < 0]

    total_trades = len(trades)
    gross_profit = float(wins.sum()) if len(wins) else 0.0
    gross_loss = float(-losses.sum()) if len(losses) else 0.0

    return PerformanceMetrics(
        total_trades=total_trades,
        profitable_trades=len(wins),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total_trades if total_trades else 0.0,
        total_return=account.total_pnl_percent,
        max_drawdown=max_drawdown(drawdowns),
        sharpe_ratio=sharpe_ratio(equities, granularity),
        avg_win=float(wins.mean()) if len(wins) else 0.0,
        avg_loss=float(losses.mean()) if len(losses) else 0.0,
        profit_factor=gross_profit / gross_loss if gross_loss > 0 else 0.0,
        largest_win=float(wins.max()) if len(wins) else 0.0,
        largest_loss=float(losses.min()) if len(losses) else 0.0,
        avg_trade_duration=float(np.mean([t.duration for t in trades])) if total_trades else 0.0,
        expectancy=float(pnls.mean()) if total_trades else 0.0,
        total_pnl=account.total_pnl,
        total_pnl_percent=account.total_pnl_percent
    )
