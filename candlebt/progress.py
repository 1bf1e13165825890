"""Progress reporting and cooperative cancellation.

The engine never blocks on the caller: it pushes ``ProgressEvent`` values
into a sink and polls a ``CancellationToken`` at its checkpoints (between
data batches and inside the candle loop).
"""

from dataclasses import dataclass
from typing import Callable, Optional
import threading

from .exceptions import CancellationError, CANCELLED_MESSAGE


STAGE_LOADING = "loading"
STAGE_RUNNING = "running"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification."""

    stage: str
    percent: float
    message: Optional[str] = None


ProgressSink = Callable[[ProgressEvent], None]


def null_sink(event: ProgressEvent) -> None:
    """Progress sink that discards everything."""


class CancellationToken:
    """Cancellation flag shared between the caller and a run.

    ``cancel()`` may be called from any thread; the run observes it the
    next time it reaches a checkpoint.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = CANCELLED_MESSAGE

    def cancel(self, reason: Optional[str] = None):
        if reason:
            self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        """Raise CancellationError if cancellation was requested."""
        if self._event.is_set():
            raise CancellationError(self.reason)
