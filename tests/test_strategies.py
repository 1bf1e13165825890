"""Tests for the built-in SMA crossover and RSI strategies."""

import math

import pytest

from candlebt.engine import BacktestEngine
from candlebt.ledger import AccountSnapshot, Position, Side
from candlebt.strategies import (
    RSIStrategy,
    SMACrossoverStrategy,
    create_strategy,
    crosses_above,
    crosses_below,
    simple_rsi
)
from candlebt.strategy import EXIT, HOLD, CandleWindow, SignalType

from conftest import T0, evaluation, make_candles


ACCOUNT = AccountSnapshot(starting_balance=1000, balance=1000, total_pnl=0, total_pnl_percent=0)


def long_position(price):
    return Position(entry_time=T0, entry_price=price, side=Side.LONG, quantity=1)


def test_sma_uses_provider_moving_averages():
    candles = make_candles([100, 101], evaluations={
        0: [evaluation("moving-averages", ma_fast=99, ma_slow=100)],
        1: [evaluation("moving-averages", ma_fast=102, ma_slow=100)],
    })
    strategy = SMACrossoverStrategy("BTC-USD")

    signal = strategy.decide(candles, None, ACCOUNT)

    assert signal.type == SignalType.ENTER
    assert signal.side == Side.LONG
    assert strategy.decide(candles, long_position(100), ACCOUNT) is HOLD
    assert strategy.required_evaluators() == ["moving-averages"]


def test_sma_fallback_enters_and_exits(make_config):
    """Without evaluations the averages are computed from closes seen so far."""
    candles = make_candles([10, 10, 10, 10, 20, 5, 5])
    strategy = SMACrossoverStrategy("BTC-USD", fast_period=2, slow_period=3)

    result = BacktestEngine().run_candles(make_config(strategy), candles)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.entry_time == candles[4].timestamp
    assert trade.entry_price == 20
    assert trade.exit_time == candles[6].timestamp
    assert trade.exit_price == 5
    assert trade.pnl == pytest.approx(-15.0)


def test_sma_holds_without_enough_history():
    strategy = SMACrossoverStrategy("BTC-USD", fast_period=2, slow_period=3)
    candles = make_candles([10, 10, 20])
    assert strategy.decide(CandleWindow(candles, 3), None, ACCOUNT) is HOLD


def test_sma_parameter_validation():
    with pytest.raises(ValueError, match="Fast period must be less than slow period"):
        SMACrossoverStrategy(fast_period=10, slow_period=10)
    with pytest.raises(ValueError, match="at least 2"):
        SMACrossoverStrategy(fast_period=1, slow_period=5)
    with pytest.raises(ValueError, match="Quantity must be positive"):
        SMACrossoverStrategy(quantity=0)


def test_rsi_enters_on_cross_above_oversold():
    candles = make_candles([100, 101], evaluations={
        0: [evaluation("rsi", rsi=25)],
        1: [evaluation("rsi", rsi=35)],
    })
    strategy = RSIStrategy("BTC-USD", quantity=2)

    signal = strategy.decide(candles, None, ACCOUNT)

    assert signal.type == SignalType.ENTER
    assert signal.quantity == 2


def test_rsi_exits_on_cross_below_overbought():
    candles = make_candles([100, 101], evaluations={
        0: [evaluation("rsi", rsi=75)],
        1: [evaluation("rsi", rsi=65)],
    })
    strategy = RSIStrategy("BTC-USD")

    assert strategy.decide(candles, long_position(100), ACCOUNT) is EXIT
    assert strategy.decide(candles, None, ACCOUNT) is HOLD


def test_rsi_stop_loss_and_take_profit():
    candles = make_candles([97])
    stop = RSIStrategy("BTC-USD", use_stop_loss=True, stop_loss_percent=2)
    assert stop.decide(candles, long_position(100), ACCOUNT) is EXIT

    candles = make_candles([106])
    target = RSIStrategy("BTC-USD", use_take_profit=True, take_profit_percent=5)
    assert target.decide(candles, long_position(100), ACCOUNT) is EXIT

    plain = RSIStrategy("BTC-USD")
    assert plain.decide(candles, long_position(100), ACCOUNT) is HOLD


def test_rsi_level_validation():
    with pytest.raises(ValueError):
        RSIStrategy(oversold_level=70, overbought_level=30)
    with pytest.raises(ValueError):
        RSIStrategy(period=1)


def test_simple_rsi_extremes():
    rising = simple_rsi(list(range(1, 17)), 14)
    assert all(math.isnan(v) for v in rising.iloc[:14])
    assert rising.iloc[-1] == 100

    flat = simple_rsi([50.0] * 16, 14)
    assert flat.iloc[-1] == 50


def test_simple_rsi_balanced_moves():
    closes = [10, 11, 10, 11, 10]
    rsi = simple_rsi(closes, 4)
    assert rsi.iloc[-1] == pytest.approx(50.0)


def test_cross_helpers():
    assert crosses_above(31, 29, 30)
    assert not crosses_above(31, 31, 30)
    assert crosses_below(69, 70, 70)
    assert not crosses_below(71, 69, 70)


def test_create_strategy():
    strategy = create_strategy("SMA", "ETH-USD", {"fast_period": 5, "slow_period": 20})
    assert isinstance(strategy, SMACrossoverStrategy)
    assert strategy.symbol == "ETH-USD"
    assert strategy.name == "SMA Crossover (5/20)"

    with pytest.raises(ValueError, match="Unknown strategy: macd"):
        create_strategy("macd")
    with pytest.raises(ValueError, match="Invalid parameters for strategy 'rsi'"):
        create_strategy("rsi", params={"lookback": 3})
