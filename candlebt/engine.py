"""Backtest engine replaying candles through a strategy.

This module coordinates:
1. Loading candles from a data loader
2. Calling the strategy once per candle with the candles seen so far
3. Opening and closing positions in the account ledger
4. Tracking the equity and drawdown curves and computing metrics
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import logging
import threading

from .config import BacktestConfig
from .data_source import Candle, ensure_ordered
from .evaluators import EvaluatorValidator
from .exceptions import (
    BacktestError,
    CancellationError,
    DataError,
    EngineStateError,
    StrategyError,
    ValidationError
)
from .ledger import AccountSnapshot, CompletedTrade, ExitReason, Ledger, Position
from .metrics import PerformanceMetrics, compute_metrics
from .progress import CancellationToken, ProgressEvent, ProgressSink, STAGE_RUNNING, null_sink
from .strategy import CandleWindow, Signal, SignalType
from .utils.helpers import to_iso
from .utils.logger import log_backtest_event


class EngineState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class EquityPoint:
    timestamp: int
    equity: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "equity": self.equity}


@dataclass(frozen=True)
class DrawdownPoint:
    timestamp: int
    drawdown_percent: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "drawdown_percent": self.drawdown_percent}


@dataclass(frozen=True)
class BacktestResult:
    """Immutable outcome of a completed run."""

    strategy: str
    symbol: str
    start_date: datetime
    end_date: datetime
    granularity: str
    account: AccountSnapshot
    metrics: PerformanceMetrics
    trades: Tuple[CompletedTrade, ...]
    equity_curve: Tuple[EquityPoint, ...]
    drawdown_curve: Tuple[DrawdownPoint, ...]

    # Only set when end-of-run liquidation is disabled and a position was left open
    open_position: Optional[Position] = None

    @property
    def candles_processed(self) -> int:
        return len(self.equity_curve)


def drawdown_percent(peak: float, equity: float) -> float:
    """Decline from peak in percent, clamped to [0, 100]."""
    if peak <= 0:
        return 0.0
    return min(100.0, max(0.0, (peak - equity) / peak * 100))


class BacktestEngine:
    """Single-use backtest engine.

    State machine: IDLE -> LOADING -> RUNNING -> COMPLETED | CANCELLED | FAILED.
    One instance performs exactly one run; a second ``run`` call (including a
    concurrent one) raises EngineStateError. All ledger and curve state lives
    inside the run, and the returned BacktestResult is immutable.
    """

    def __init__(
        self,
        loader=None,
        validator: Optional[EvaluatorValidator] = None,
        progress_interval: int = 100,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize backtest engine.

        Args:
            loader: Candle loader with a ``load(symbol, start, end, granularity,
                evaluators, cancel_token, progress)`` method. Required by ``run``.
            validator: Optional evaluator parameter validator
            progress_interval: Emit running progress every N candles
            logger: Optional logger
        """
        if progress_interval < 1:
            raise ValueError("progress_interval must be >= 1")
        self.loader = loader
        self.validator = validator
        self.progress_interval = progress_interval
        self.logger = logger or logging.getLogger(__name__)

        self._state = EngineState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> EngineState:
        return self._state

    def run(
        self,
        config: BacktestConfig,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None
    ) -> BacktestResult:
        """Load candles for ``config`` and run the simulation.

        Args:
            config: Backtest configuration
            cancel_token: Polled between data batches and once per candle
            progress: Receives loading and running ProgressEvents

        Returns:
            BacktestResult

        Raises:
            ValidationError: Invalid evaluator parameters
            NetworkError: A data batch could not be fetched
            DataError: No candles, or candles not strictly increasing
            StrategyError: The strategy raised while deciding
            CancellationError: The run was cancelled
            EngineStateError: The engine was already used
        """
        if self.loader is None:
            raise ValueError("BacktestEngine.run requires a loader")
        self._begin(EngineState.LOADING)

        with self._terminal_state(config):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            self._validate_evaluators(config)
            evaluator_ids = config.all_evaluator_ids()

            log_backtest_event(self.logger, "LOAD_START", {
                "symbol": config.symbol,
                "granularity": config.granularity,
                "start": config.start_date.isoformat(),
                "end": config.end_date.isoformat(),
                "evaluators": evaluator_ids
            })
            candles = self.loader.load(
                config.symbol,
                config.start_date,
                config.end_date,
                config.granularity,
                evaluators=evaluator_ids,
                cancel_token=cancel_token,
                progress=progress
            )
            log_backtest_event(self.logger, "LOAD_COMPLETE", {"candles_count": len(candles)})

            self._state = EngineState.RUNNING
            return self._simulate(config, candles, cancel_token, progress or null_sink)

    def run_candles(
        self,
        config: BacktestConfig,
        candles: Sequence[Candle],
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None
    ) -> BacktestResult:
        """Run the simulation over already-loaded candles (no loading stage)."""
        self._begin(EngineState.RUNNING)
        with self._terminal_state(config):
            return self._simulate(config, candles, cancel_token, progress or null_sink)

    def _begin(self, state: EngineState):
        with self._lock:
            if self._state != EngineState.IDLE:
                raise EngineStateError(
                    f"BacktestEngine is single-use (current state: {self._state.value}); "
                    f"create a new engine for each run"
                )
            self._state = state

    @contextmanager
    def _terminal_state(self, config: BacktestConfig):
        """Move the engine to its terminal state when the run ends."""
        try:
            yield
        except CancellationError as e:
            self._state = EngineState.CANCELLED
            log_backtest_event(self.logger, "CANCELLED", {"reason": str(e)})
            raise
        except Exception as e:
            self._state = EngineState.FAILED
            log_backtest_event(self.logger, "ERROR", {
                "error": f"{config.symbol}: {e}",
                "exc_info": isinstance(e, StrategyError) or not isinstance(e, BacktestError)
            })
            raise
        else:
            self._state = EngineState.COMPLETED

    def _validate_evaluators(self, config: BacktestConfig):
        if self.validator is None:
            return
        errors: List[str] = []
        for evaluator in config.all_evaluators():
            result = self.validator.validate_params(evaluator.id, evaluator.params)
            if not result.valid:
                errors.extend(f"{evaluator.id}: {e}" for e in result.errors)
        if errors:
            raise ValidationError("Invalid evaluator parameters: " + "; ".join(errors))

    def _simulate(
        self,
        config: BacktestConfig,
        candles: Sequence[Candle],
        cancel_token: Optional[CancellationToken],
        progress: ProgressSink
    ) -> BacktestResult:
        if not candles:
            raise DataError(f"No historical data found for {config.symbol} in the selected range")
        ensure_ordered(candles)

        strategy = config.strategy
        ledger = Ledger(config.starting_balance)
        equity_curve: List[EquityPoint] = []
        drawdown_curve: List[DrawdownPoint] = []
        peak = ledger.starting_balance
        total = len(candles)

        log_backtest_event(self.logger, "RUN_START", {
            "strategy": strategy.name,
            "candles_count": total,
            "starting_balance": ledger.starting_balance
        })

        for i, candle in enumerate(candles):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            window = CandleWindow(candles, i + 1)
            try:
                signal = strategy.decide(window, ledger.position, ledger.snapshot())
            except Exception as e:
                raise StrategyError(e) from e
            if not isinstance(signal, Signal):
                raise StrategyError(TypeError(
                    f"Strategy returned {type(signal).__name__}, expected Signal"
                ))

            self._apply_signal(signal, ledger, candle)

            equity = ledger.equity(candle.close)
            peak = max(peak, equity)
            equity_curve.append(EquityPoint(candle.timestamp, equity))
            drawdown_curve.append(DrawdownPoint(candle.timestamp, drawdown_percent(peak, equity)))

            if (i + 1) % self.progress_interval == 0 or i == total - 1:
                progress(ProgressEvent(stage=STAGE_RUNNING, percent=(i + 1) / total * 100))

        last = candles[-1]
        open_position = None
        if ledger.position is not None:
            if config.liquidate_at_end:
                self.logger.info("Closing remaining open position at end of backtest")
                self._close(ledger, last, ExitReason.END_OF_DATA)
            else:
                open_position = ledger.position
                self.logger.info("Position left open at end of backtest (not included in trades)")

        account = ledger.snapshot()
        trades = ledger.trades
        metrics = compute_metrics(
            trades,
            [p.equity for p in equity_curve],
            [p.drawdown_percent for p in drawdown_curve],
            account,
            config.granularity
        )

        log_backtest_event(self.logger, "RUN_COMPLETE", {
            "trades": len(trades),
            "balance": account.balance
        })

        return BacktestResult(
            strategy=strategy.name,
            symbol=config.symbol,
            start_date=config.start_date,
            end_date=config.end_date,
            granularity=config.granularity,
            account=account,
            metrics=metrics,
            trades=trades,
            equity_curve=tuple(equity_curve),
            drawdown_curve=tuple(drawdown_curve),
            open_position=open_position
        )

    def _apply_signal(self, signal: Signal, ledger: Ledger, candle: Candle):
        """Apply a signal at the candle's close. Signals that don't fit the current state are no-ops."""
        if signal.type == SignalType.ENTER and ledger.position is None:
            ledger.open_position(signal.side, signal.quantity, candle.close, candle.timestamp)
            log_backtest_event(self.logger, "TRADE_OPEN", {
                "time": to_iso(candle.timestamp),
                "side": signal.side.value,
                "quantity": signal.quantity,
                "price": candle.close
            })
        elif signal.type == SignalType.EXIT and ledger.position is not None:
            self._close(ledger, candle, ExitReason.SIGNAL)

    def _close(self, ledger: Ledger, candle: Candle, reason: ExitReason):
        trade = ledger.close_position(candle.close, candle.timestamp, reason)
        log_backtest_event(self.logger, "TRADE_CLOSE", {
            "time": to_iso(candle.timestamp),
            "side": trade.side.value,
            "price": trade.exit_price,
            "reason": reason.value,
            "pnl": trade.pnl
        })

