"""Built-in strategies and the strategy registry.

Both strategies read precomputed evaluator outputs from candles when the
provider attached them, and otherwise compute the indicator from the close
prices of the candles seen so far.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .data_source import Candle
from .indicators import MOVING_AVERAGES, RSI, get_moving_averages, get_rsi
from .ledger import AccountSnapshot, Position, Side
from .strategy import HOLD, EXIT, Signal, Strategy


def _closes(candles: Sequence[Candle], count: int) -> List[float]:
    return [c.close for c in candles[-count:]]


def simple_rsi(closes: Sequence[float], period: int) -> pd.Series:
    """RSI from simple moving averages of gains and losses.

    Returns a series aligned with ``closes``; the first ``period`` values are NaN.
    A window with no losses scores 100, a completely flat window scores 50.
    """
    delta = pd.Series(closes, dtype="float64").diff()
    gains = delta.clip(lower=0).rolling(period).mean()
    losses = (-delta.clip(upper=0)).rolling(period).mean()

    with np.errstate(divide="ignore", invalid="ignore"):
        rsi = 100 - 100 / (1 + gains / losses)
    rsi = rsi.where(losses != 0, 100.0)
    rsi = rsi.where(~((losses == 0) & (gains == 0)), 50.0)
    return rsi.where(gains.notna())


def crosses_above(current: float, previous: float, threshold: float) -> bool:
    return current > threshold and previous <= threshold


def crosses_below(current: float, previous: float, threshold: float) -> bool:
    return current < threshold and previous >= threshold


class SMACrossoverStrategy(Strategy):
    """Simple moving average crossover.

    Enters long when the fast MA crosses above the slow MA (golden cross)
    and exits when it crosses back below (death cross).
    """

    description = "Moving average crossover strategy"

    def __init__(self, symbol: str = "", fast_period: int = 50, slow_period: int = 200,
                 quantity: float = 1.0):
        if fast_period >= slow_period:
            raise ValueError("Fast period must be less than slow period for SMA crossover strategy")
        if fast_period < 2 or slow_period < 2:
            raise ValueError("MA periods must be at least 2")
        if quantity <= 0:
            raise ValueError("Quantity must be positive")

        super().__init__(symbol=symbol, name=f"SMA Crossover ({fast_period}/{slow_period})")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.quantity = quantity

    def required_evaluators(self) -> List[str]:
        return [MOVING_AVERAGES]

    def moving_averages(self, candles: Sequence[Candle]) -> Optional[Tuple[float, float, float, float]]:
        """Return (previous_fast, previous_slow, fast, slow), or None without enough data."""
        if len(candles) < 2:
            return None

        previous = get_moving_averages(candles[-2])
        current = get_moving_averages(candles[-1])
        keys = ("ma_fast", "ma_slow")
        if all(k in previous for k in keys) and all(k in current for k in keys):
            return previous["ma_fast"], previous["ma_slow"], current["ma_fast"], current["ma_slow"]

        if len(candles) < self.slow_period + 1:
            return None
        closes = np.asarray(_closes(candles, self.slow_period + 1))
        return (
            float(closes[-self.fast_period - 1:-1].mean()),
            float(closes[:-1].mean()),
            float(closes[-self.fast_period:].mean()),
            float(closes[1:].mean())
        )

    def decide(self, candles: Sequence[Candle], position: Optional[Position],
               account: AccountSnapshot) -> Signal:
        averages = self.moving_averages(candles)
        if averages is None:
            return HOLD
        previous_fast, previous_slow, fast, slow = averages

        if position is None and previous_fast <= previous_slow and fast > slow:
            return Signal.enter(Side.LONG, self.quantity)
        if position is not None and previous_fast >= previous_slow and fast < slow:
            return EXIT
        return HOLD


class RSIStrategy(Strategy):
    """RSI mean reversion.

    Enters long when RSI crosses back above the oversold level and exits
    when it crosses back below the overbought level. Optional stop-loss and
    take-profit exits are measured from the position's entry price.
    """

    description = "RSI-based mean reversion strategy"

    def __init__(self, symbol: str = "", period: int = 14, oversold_level: float = 30.0,
                 overbought_level: float = 70.0, quantity: float = 1.0,
                 use_stop_loss: bool = False, stop_loss_percent: float = 2.0,
                 use_take_profit: bool = False, take_profit_percent: float = 5.0):
        if oversold_level >= overbought_level:
            raise ValueError("Oversold level must be less than overbought level")
        if oversold_level < 0 or overbought_level > 100:
            raise ValueError("RSI levels must be between 0 and 100")
        if period < 2:
            raise ValueError("RSI period must be at least 2")
        if quantity <= 0:
            raise ValueError("Quantity must be positive")

        super().__init__(symbol=symbol, name=f"RSI Mean Reversion ({period})")
        self.period = period
        self.oversold_level = oversold_level
        self.overbought_level = overbought_level
        self.quantity = quantity
        self.use_stop_loss = use_stop_loss
        self.stop_loss_percent = stop_loss_percent
        self.use_take_profit = use_take_profit
        self.take_profit_percent = take_profit_percent

    def required_evaluators(self) -> List[str]:
        return [RSI]

    def rsi_values(self, candles: Sequence[Candle]) -> Optional[Tuple[float, float]]:
        """Return (previous_rsi, rsi), or None without enough data."""
        if len(candles) < 2:
            return None

        previous, current = get_rsi(candles[-2]), get_rsi(candles[-1])
        if previous is not None and current is not None:
            return previous, current

        if len(candles) < self.period + 2:
            return None
        series = simple_rsi(_closes(candles, self.period + 2), self.period)
        return float(series.iloc[-2]), float(series.iloc[-1])

    def decide(self, candles: Sequence[Candle], position: Optional[Position],
               account: AccountSnapshot) -> Signal:
        price = candles[-1].close

        if position is not None:
            if self.use_stop_loss and price <= position.entry_price * (1 - self.stop_loss_percent / 100):
                return EXIT
            if self.use_take_profit and price >= position.entry_price * (1 + self.take_profit_percent / 100):
                return EXIT

        values = self.rsi_values(candles)
        if values is None:
            return HOLD
        previous_rsi, rsi = values

        if position is None and crosses_above(rsi, previous_rsi, self.oversold_level):
            return Signal.enter(Side.LONG, self.quantity)
        if position is not None and crosses_below(rsi, previous_rsi, self.overbought_level):
            return EXIT
        return HOLD


STRATEGIES = {
    "sma": SMACrossoverStrategy,
    "rsi": RSIStrategy,
}


def create_strategy(name: str, symbol: str = "", params: Optional[Dict[str, Any]] = None) -> Strategy:
    """Instantiate a registered strategy by name.

    Raises:
        ValueError: If the name is unknown or params are invalid
    """
    strategy_cls = STRATEGIES.get(name.lower())
    if strategy_cls is None:
        raise ValueError(f"Unknown strategy: {name}. Available: {', '.join(sorted(STRATEGIES))}")
    try:
        return strategy_cls(symbol=symbol, **(params or {}))
    except TypeError as e:
        raise ValueError(f"Invalid parameters for strategy '{name}': {e}") from e
