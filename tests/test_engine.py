"""Tests for the backtest engine (execution state machine)."""

import math

import pytest

from candlebt.engine import BacktestEngine, EngineState, drawdown_percent
from candlebt.evaluators import IndicatorSchema, ParameterDefinition, SchemaValidator
from candlebt.granularity import HOUR_MS
from candlebt.exceptions import (
    CancellationError,
    DataError,
    EngineStateError,
    StrategyError,
    ValidationError
)
from candlebt.ledger import ExitReason, Side
from candlebt.progress import CancellationToken
from candlebt.strategy import EXIT, Signal

from conftest import FakeLoader, ScriptedStrategy, T0, make_candles


def run_candles(config, candles, **kwargs):
    return BacktestEngine(**kwargs).run_candles(config, candles)


def test_enter_and_exit_scenario(make_config):
    """ENTER long at index 1 (close 100), EXIT at index 4 (close 110) books pnl 10 / 10%."""
    candles = make_candles([95, 100, 104, 108, 110, 107])
    strategy = ScriptedStrategy({1: Signal.enter(Side.LONG, 1), 4: EXIT})
    config = make_config(strategy)

    result = run_candles(config, candles)

    assert len(result.trades) == 1, f"Expected one trade, got {len(result.trades)}"
    trade = result.trades[0]
    assert trade.pnl == pytest.approx(10.0)
    assert trade.pnl_percent == pytest.approx(10.0)
    assert trade.entry_time == T0 + HOUR_MS
    assert trade.exit_time == T0 + 4 * HOUR_MS
    assert trade.duration == 3 * HOUR_MS
    assert trade.exit_reason == ExitReason.SIGNAL
    assert result.account.balance == pytest.approx(1000.0 + 10.0)
    assert len(result.equity_curve) == 6
    assert len(result.drawdown_curve) == 6


def test_never_signalling_strategy_is_flat(make_config):
    """A strategy that always holds leaves equity flat at the starting balance."""
    candles = make_candles([100, 90, 120, 80, 130])
    result = run_candles(make_config(ScriptedStrategy()), candles)

    assert result.trades == ()
    assert [p.equity for p in result.equity_curve] == [1000.0] * 5
    assert result.metrics.max_drawdown == 0
    assert result.metrics.win_rate == 0
    assert result.metrics.sharpe_ratio == 0


def test_curves_match_candles_and_drawdown_bounds(make_config):
    """Curve lengths equal candles processed and drawdown stays within [0, 100]."""
    closes = [100, 120, 60, 20, 150, 10, 40]
    candles = make_candles(closes)
    strategy = ScriptedStrategy({0: Signal.enter(Side.LONG, 10), 3: EXIT, 4: Signal.enter(Side.LONG, 10)})

    result = run_candles(make_config(strategy), candles)

    assert len(result.equity_curve) == len(candles)
    assert len(result.drawdown_curve) == len(candles)
    assert result.candles_processed == len(candles)
    for point in result.drawdown_curve:
        assert 0 <= point.drawdown_percent <= 100, f"Drawdown out of range: {point}"
    assert [p.timestamp for p in result.equity_curve] == [c.timestamp for c in candles]


def test_total_pnl_equals_sum_of_trades_with_forced_liquidation(make_config):
    """A position open at the end is closed at the last close and counted."""
    candles = make_candles([100, 105, 95, 120, 130])
    strategy = ScriptedStrategy({0: Signal.enter(Side.LONG, 2), 1: EXIT, 2: Signal.enter(Side.LONG, 1)})

    result = run_candles(make_config(strategy), candles)

    assert len(result.trades) == 2
    last = result.trades[-1]
    assert last.exit_reason == ExitReason.END_OF_DATA
    assert last.exit_price == 130
    assert last.exit_time == candles[-1].timestamp
    assert result.account.total_pnl == pytest.approx(sum(t.pnl for t in result.trades))
    assert result.account.balance == pytest.approx(1000 + 10 + 35)
    assert result.open_position is None
    # Final equity point already includes the mark-to-market value of the liquidated position
    assert result.equity_curve[-1].equity == pytest.approx(result.account.balance)


def test_no_liquidation_leaves_position_out_of_trades(make_config):
    """With liquidation disabled the open position is reported separately."""
    candles = make_candles([100, 110, 120])
    strategy = ScriptedStrategy({0: Signal.enter(Side.LONG, 1)})

    result = run_candles(make_config(strategy, liquidate_at_end=False), candles)

    assert result.trades == ()
    assert result.open_position is not None
    assert result.open_position.entry_price == 100
    assert result.account.balance == 1000.0, "Balance must not include unrealized PnL"
    assert result.equity_curve[-1].equity == pytest.approx(1020.0)


def test_short_position_pnl(make_config):
    """Short positions profit when price falls."""
    candles = make_candles([200, 180, 150])
    strategy = ScriptedStrategy({0: Signal.enter(Side.SHORT, 2), 2: EXIT})

    result = run_candles(make_config(strategy), candles)

    trade = result.trades[0]
    assert trade.side == Side.SHORT
    assert trade.pnl == pytest.approx(100.0)
    assert trade.pnl_percent == pytest.approx(25.0)


def test_balance_unchanged_while_position_open(make_config):
    """Opening a position does not change balance; equity tracks unrealized PnL."""
    candles = make_candles([100, 100, 90, 95])
    strategy = ScriptedStrategy({0: Signal.enter(Side.LONG, 1)})

    result = run_candles(make_config(strategy, liquidate_at_end=False), candles)

    balances = [a.balance for a in strategy.seen_accounts]
    assert balances == [1000.0] * 4
    assert [p.equity for p in result.equity_curve] == [1000.0, 1000.0, 990.0, 995.0]
    assert [p.drawdown_percent for p in result.drawdown_curve] == pytest.approx([0, 0, 1.0, 0.5])


def test_inapplicable_signals_are_ignored(make_config):
    """ENTER while in a position and EXIT while flat are no-ops."""
    candles = make_candles([100, 101, 102, 103, 104])
    strategy = ScriptedStrategy({
        0: EXIT,
        1: Signal.enter(Side.LONG, 1),
        2: Signal.enter(Side.SHORT, 5),
        3: EXIT
    })

    result = run_candles(make_config(strategy), candles)

    assert len(result.trades) == 1
    assert result.trades[0].side == Side.LONG
    assert result.trades[0].quantity == 1
    assert result.trades[0].pnl == pytest.approx(2.0)


def test_strategy_never_sees_future_candles(make_config):
    """At step i the strategy gets exactly candles[0..i] and cannot index past them."""
    candles = make_candles([100, 101, 102, 103])
    peeks = []

    def on_decide(index, window, position, account):
        assert window.current.timestamp == candles[index].timestamp
        with pytest.raises(IndexError):
            window[len(window)]
        peeks.append(window[-1].close)

    strategy = ScriptedStrategy(on_decide=on_decide)
    run_candles(make_config(strategy), candles)

    assert strategy.seen_lengths == [1, 2, 3, 4]
    assert peeks == [100, 101, 102, 103]


def test_strategy_error_aborts_run(make_config):
    """An exception in decide becomes StrategyError carrying the original message."""
    candles = make_candles([100, 101, 102])

    def boom(index, *args):
        if index == 1:
            raise ValueError("indicator blew up")

    engine = BacktestEngine()
    with pytest.raises(StrategyError) as exc_info:
        engine.run_candles(make_config(ScriptedStrategy(on_decide=boom)), candles)

    assert str(exc_info.value) == "indicator blew up"
    assert isinstance(exc_info.value.original, ValueError)
    assert exc_info.value.__cause__ is exc_info.value.original
    assert engine.state == EngineState.FAILED


def test_non_signal_return_is_strategy_error(make_config):
    """Returning something other than a Signal fails the run."""
    candles = make_candles([100, 101])

    class BadStrategy(ScriptedStrategy):
        def decide(self, candles, position, account):
            return "BUY"

    with pytest.raises(StrategyError):
        run_candles(make_config(BadStrategy()), candles)


def test_cancellation_during_run(make_config):
    """Cancelling mid-run raises CancellationError and stops processing."""
    candles = make_candles([100 + i for i in range(10)])
    token = CancellationToken()

    def cancel_at_three(index, *args):
        if index == 3:
            token.cancel()

    strategy = ScriptedStrategy(on_decide=cancel_at_three)
    engine = BacktestEngine()
    with pytest.raises(CancellationError) as exc_info:
        engine.run_candles(make_config(strategy), candles, cancel_token=token)

    assert str(exc_info.value) == "Backtest cancelled by user"
    assert len(strategy.seen_lengths) == 4, "No candle may be processed after cancellation is observed"
    assert engine.state == EngineState.CANCELLED


def test_engine_is_single_use(make_config):
    """A second run on the same engine is rejected."""
    candles = make_candles([100, 101])
    config = make_config(ScriptedStrategy())
    engine = BacktestEngine()
    engine.run_candles(config, candles)
    assert engine.state == EngineState.COMPLETED

    with pytest.raises(EngineStateError):
        engine.run_candles(config, candles)


def test_empty_candles_raise_data_error(make_config):
    engine = BacktestEngine()
    with pytest.raises(DataError):
        engine.run_candles(make_config(ScriptedStrategy()), [])
    assert engine.state == EngineState.FAILED


def test_out_of_order_candles_raise_data_error(make_config):
    candles = make_candles([100, 101, 102])
    with pytest.raises(DataError):
        run_candles(make_config(ScriptedStrategy()), [candles[0], candles[2], candles[1]])


def test_single_candle_run(make_config):
    """One candle: one curve point and zero drawdown."""
    result = run_candles(make_config(ScriptedStrategy({0: Signal.enter(Side.LONG, 1)})), make_candles([100]))

    assert len(result.equity_curve) == 1
    assert result.metrics.max_drawdown == 0
    assert len(result.trades) == 1
    assert result.trades[0].pnl == 0
    for value in result.metrics.to_dict().values():
        assert math.isfinite(value)


def test_progress_events(make_config):
    """Running progress is emitted every interval and on the last candle."""
    events = []
    engine = BacktestEngine(progress_interval=2)
    engine.run_candles(make_config(ScriptedStrategy()), make_candles([1, 2, 3, 4, 5]), progress=events.append)

    assert [e.percent for e in events] == pytest.approx([40.0, 80.0, 100.0])
    assert all(e.stage == "running" for e in events)


def test_run_loads_candles_with_merged_evaluators(make_config):
    """run() asks the loader for config evaluators plus the strategy's required ones."""
    loader = FakeLoader(make_candles([100, 101, 102]))
    strategy = ScriptedStrategy(evaluators=["rsi", "moving-averages"])
    config = make_config(strategy, evaluators=["rsi", "macd"])

    result = BacktestEngine(loader=loader).run(config)

    assert loader.calls[0]["evaluators"] == ["rsi", "macd", "moving-averages"]
    assert loader.calls[0]["granularity"] == "ONE_HOUR"
    assert result.candles_processed == 3


def test_cancellation_before_loading_completes(make_config):
    """A token cancelled during loading ends the run before any candle is processed."""
    loader = FakeLoader(make_candles([100, 101]), on_load=lambda token: token.cancel())
    strategy = ScriptedStrategy()
    engine = BacktestEngine(loader=loader)

    with pytest.raises(CancellationError):
        engine.run(make_config(strategy), cancel_token=CancellationToken())

    assert strategy.seen_lengths == []
    assert engine.state == EngineState.CANCELLED


def test_token_cancelled_before_run_skips_loading(make_config):
    loader = FakeLoader(make_candles([100, 101]))
    token = CancellationToken()
    token.cancel()
    engine = BacktestEngine(loader=loader)

    with pytest.raises(CancellationError):
        engine.run(make_config(ScriptedStrategy()), cancel_token=token)

    assert loader.calls == []
    assert engine.state == EngineState.CANCELLED


def test_invalid_evaluator_params_rejected_before_loading(make_config):
    """Evaluator params are validated before any data is requested."""
    validator = SchemaValidator([
        IndicatorSchema(id="rsi", name="RSI", parameters={
            "period": ParameterDefinition(type="number", label="Period", min=2, max=100)
        })
    ])
    loader = FakeLoader(make_candles([100]))
    config = make_config(ScriptedStrategy(), evaluators=[{"id": "rsi", "params": {"period": 1}}])

    with pytest.raises(ValidationError) as exc_info:
        BacktestEngine(loader=loader, validator=validator).run(config)

    assert "Period must be >= 2" in str(exc_info.value)
    assert loader.calls == []


def test_drawdown_percent_clamped():
    assert drawdown_percent(100, 50) == 50
    assert drawdown_percent(100, 120) == 0
    assert drawdown_percent(100, -50) == 100
    assert drawdown_percent(0, -10) == 0
