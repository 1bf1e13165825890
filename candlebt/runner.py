"""Consumer-facing run boundary.

``BacktestRunner`` wraps a fresh engine per run and exposes a coarse,
observable state instead of raising: ``{is_running, is_loading, progress,
result, error}``. ``cancel()`` may be called from another thread while a
run is in progress.
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional
import logging
import threading
import time

from .config import BacktestConfig
from .engine import BacktestEngine, BacktestResult
from .evaluators import EvaluatorValidator
from .exceptions import BacktestError, CancellationError, CANCELLED_MESSAGE
from .progress import CancellationToken, ProgressEvent, STAGE_LOADING
from .utils.monitor import PerformanceMonitor, monitor as default_monitor


@dataclass(frozen=True)
class BacktestState:
    is_running: bool = False
    is_loading: bool = False
    progress: float = 0.0
    result: Optional[BacktestResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "is_loading": self.is_loading,
            "progress": self.progress,
            "error": self.error
        }


class BacktestRunner:
    """Runs backtests one at a time and tracks their observable state."""

    def __init__(
        self,
        loader,
        validator: Optional[EvaluatorValidator] = None,
        progress_interval: int = 100,
        logger: Optional[logging.Logger] = None,
        monitor: Optional[PerformanceMonitor] = None,
        on_change: Optional[Callable[[BacktestState], None]] = None
    ):
        """Initialize runner.

        Args:
            loader: Candle loader handed to each engine
            validator: Optional evaluator parameter validator
            progress_interval: Emit running progress every N candles
            logger: Optional logger
            monitor: Run monitor (the global one by default)
            on_change: Called with the new state after every change
        """
        self.loader = loader
        self.validator = validator
        self.progress_interval = progress_interval
        self.logger = logger or logging.getLogger(__name__)
        self.monitor = monitor or default_monitor
        self.on_change = on_change

        self._state = BacktestState()
        self._token: Optional[CancellationToken] = None
        self._queued = False
        self._lock = threading.Lock()

    @property
    def state(self) -> BacktestState:
        with self._lock:
            return self._state

    def _update(self, **changes):
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
        if self.on_change is not None:
            self.on_change(state)

    def _on_progress(self, event: ProgressEvent):
        if event.stage == STAGE_LOADING:
            self._update(is_loading=True)
        else:
            self._update(is_loading=False, progress=event.percent)

    def queue(self) -> bool:
        """Reserve the runner for a run that starts later (e.g. in a background task).

        The state becomes running and loading immediately, and ``cancel()``
        works from this point on. The next ``run()`` call uses the reservation.

        Returns:
            False if a run is already in progress or queued
        """
        with self._lock:
            if self._state.is_running:
                return False
            self._token = CancellationToken()
            self._queued = True
            self._state = BacktestState(is_running=True, is_loading=True)
        if self.on_change is not None:
            self.on_change(self.state)
        return True

    def run(self, config: BacktestConfig) -> BacktestState:
        """Run one backtest to a terminal state.

        Never raises for run failures: errors and cancellation end up in
        ``state.error`` and ``state.result`` stays None.

        Returns:
            The final BacktestState
        """
        with self._lock:
            if self._queued:
                # Reserved by queue(); a cancel issued since then is already on the token
                self._queued = False
                token = self._token
                notify = False
            elif self._state.is_running:
                self.logger.warning("A backtest is already running; ignoring new run request")
                return self._state
            else:
                token = CancellationToken()
                self._token = token
                self._state = BacktestState(is_running=True, is_loading=True)
                notify = True
        if notify and self.on_change is not None:
            self.on_change(self.state)

        engine = BacktestEngine(
            loader=self.loader,
            validator=self.validator,
            progress_interval=self.progress_interval,
            logger=self.logger
        )

        start_time = time.time()
        result: Optional[BacktestResult] = None
        error: Optional[str] = None
        try:
            result = engine.run(config, cancel_token=token, progress=self._on_progress)
            if token.is_cancelled:
                # Cancelled after the last checkpoint; the result is discarded
                result = None
                error = token.reason
        except CancellationError as e:
            error = str(e) or CANCELLED_MESSAGE
        except BacktestError as e:
            error = str(e)
        except Exception as e:
            self.logger.exception(f"Unexpected error during backtest: {e}")
            error = str(e) or type(e).__name__

        status = "completed" if result is not None else ("cancelled" if token.is_cancelled else "failed")
        self.monitor.record_run(
            duration=time.time() - start_time,
            status=status,
            symbol=config.symbol,
            trades=len(result.trades) if result else 0,
            candles=result.candles_processed if result else 0
        )

        with self._lock:
            self._token = None
        self._update(
            is_running=False,
            is_loading=False,
            progress=100.0 if result is not None else self.state.progress,
            result=result,
            error=error
        )
        return self.state

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Request cancellation of the current run.

        Returns:
            True if a run was in progress
        """
        with self._lock:
            token = self._token
        if token is None:
            return False
        token.cancel(reason)
        self.logger.info("Cancellation requested")
        return True

    def reset(self):
        """Clear the last result or error. Ignored while a run is in progress."""
        with self._lock:
            if self._state.is_running:
                return
            self._state = BacktestState()
