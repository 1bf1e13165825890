"""Shared builders for the candlebt tests."""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import pytest
import pytz

from candlebt.config import BacktestConfig
from candlebt.data_source import Candle
from candlebt.exceptions import NetworkError
from candlebt.granularity import HOUR_MS, interval_ms
from candlebt.indicators import IndicatorEvaluation, IndicatorValue
from candlebt.strategy import HOLD, Signal, Strategy


# 2024-01-01T00:00:00Z
T0 = 1704067200000
START = datetime(2024, 1, 1, tzinfo=pytz.utc)
END = datetime(2024, 1, 2, tzinfo=pytz.utc)


def make_candles(closes: Sequence[float], start: int = T0, step: int = HOUR_MS,
                 evaluations: Optional[Dict[int, List[IndicatorEvaluation]]] = None) -> List[Candle]:
    """One candle per close price, spaced by ``step``."""
    evaluations = evaluations or {}
    candles = []
    for i, close in enumerate(closes):
        evals = evaluations.get(i)
        candles.append(Candle(
            timestamp=start + i * step,
            open=close,
            high=close + 1,
            low=close - 1,
            close=close,
            volume=1000.0,
            evaluations=tuple(evals) if evals else None
        ))
    return candles


def evaluation(evaluator_id: str, **values: float) -> IndicatorEvaluation:
    return IndicatorEvaluation(
        id=evaluator_id,
        name=evaluator_id,
        values=tuple(IndicatorValue(name=k, value=v) for k, v in values.items())
    )


class ScriptedStrategy(Strategy):
    """Returns pre-scripted signals by candle index and records what it saw."""

    name = "Scripted"

    def __init__(self, signals: Optional[Dict[int, Signal]] = None,
                 on_decide: Optional[Callable] = None, evaluators: Sequence[str] = ()):
        super().__init__(symbol="BTC-USD")
        self.signals = signals or {}
        self.on_decide = on_decide
        self.evaluators = list(evaluators)
        self.seen_lengths: List[int] = []
        self.seen_positions = []
        self.seen_accounts = []

    def required_evaluators(self) -> List[str]:
        return list(self.evaluators)

    def decide(self, candles, position, account) -> Signal:
        index = len(candles) - 1
        self.seen_lengths.append(len(candles))
        self.seen_positions.append(position)
        self.seen_accounts.append(account)
        if self.on_decide is not None:
            self.on_decide(index, candles, position, account)
        return self.signals.get(index, HOLD)


class FakeLoader:
    """Loader returning fixed candles; ``on_load`` runs before returning."""

    def __init__(self, candles: Sequence[Candle], on_load: Optional[Callable] = None,
                 error: Optional[Exception] = None):
        self.candles = list(candles)
        self.on_load = on_load
        self.error = error
        self.calls = []
        self.closed = False

    def load(self, symbol, start, end, granularity, evaluators=(), cancel_token=None, progress=None):
        self.calls.append({
            "symbol": symbol,
            "start": start,
            "end": end,
            "granularity": granularity,
            "evaluators": list(evaluators)
        })
        if self.on_load is not None:
            self.on_load(cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if self.error is not None:
            raise self.error
        return list(self.candles)

    def close(self):
        self.closed = True


class FakeMarketClient:
    """Stands in for MarketApiClient; synthesizes candles for each requested window."""

    def __init__(self, fail_on_call: Optional[int] = None, price: Callable[[int], float] = None):
        self.fail_on_call = fail_on_call
        self.price = price or (lambda ts: 100.0 + ((ts - T0) // HOUR_MS) % 7)
        self.calls = []
        self.closed = False

    def fetch_history(self, symbol, granularity, start_ms, end_ms, evaluators=()):
        self.calls.append((start_ms, end_ms, list(evaluators)))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise NetworkError(f"Failed to fetch candles for call {len(self.calls)}")

        step = interval_ms(granularity)
        candles = []
        ts = start_ms
        while ts <= end_ms:
            price = self.price(ts)
            candles.append({
                "timestamp": ts,
                "open": price,
                "high": price + 1,
                "low": price - 1,
                "close": price,
                "volume": 10
            })
            ts += step
        return candles

    def close(self):
        self.closed = True


@pytest.fixture
def make_config():
    """Factory for a valid one-day hourly config around a given strategy."""

    def factory(strategy: Strategy, /, **overrides) -> BacktestConfig:
        values = {
            "symbol": "BTC-USD",
            "start_date": START,
            "end_date": END,
            "strategy": strategy,
            "granularity": "ONE_HOUR",
            "starting_balance": 1000.0
        }
        values.update(overrides)
        return BacktestConfig(**values)

    return factory
