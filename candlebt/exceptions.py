"""Error taxonomy for loading and simulation."""


CANCELLED_MESSAGE = "Backtest cancelled by user"


class BacktestError(Exception):
    """Base class for all backtest errors."""


class ValidationError(BacktestError, ValueError):
    """Invalid configuration or request (e.g. start time not before end time)."""


class NetworkError(BacktestError):
    """A historical data batch could not be fetched."""


class DataError(BacktestError):
    """Loaded candles are unusable (empty range, out-of-order timestamps)."""


class CancellationError(BacktestError):
    """The caller cancelled the run. An expected outcome, not a crash."""

    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


class StrategyError(BacktestError):
    """The strategy raised while deciding.

    The message is the original exception's message, unchanged, and the
    original exception is kept on ``original`` (and as ``__cause__``).
    """

    def __init__(self, original: BaseException):
        super().__init__(str(original))
        self.original = original


class EngineStateError(BacktestError):
    """An engine instance was reused or run concurrently."""
