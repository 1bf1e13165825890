"""Historical candle loading.

This module turns a symbol / time range / granularity request into an
ordered list of candles. Provider requests are capped per call, so large
ranges are split into sequential batches that tile the aligned range
exactly. It also loads candles from local CSV/Parquet files and can
synthesize mock candles for offline testing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from .api_client import MarketApiClient
from .exceptions import DataError, NetworkError, ValidationError
from .granularity import align_down, align_up, candle_count, granularity_name, interval_ms
from .indicators import IndicatorEvaluation
from .progress import CancellationToken, ProgressEvent, ProgressSink, STAGE_LOADING, null_sink
from .utils.helpers import from_ms, to_iso, to_ms


TimeLike = Union[datetime, int]

MOCK_BASE_PRICE = 60000.0
MOCK_VOLATILITY = 2000.0


@dataclass(frozen=True)
class Candle:
    """Represents a single OHLCV candle (timestamp in epoch milliseconds)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    evaluations: Optional[Tuple[IndicatorEvaluation, ...]] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Candle":
        """Create Candle from a provider candle dictionary."""
        evaluations = data.get("evaluations")
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume") or 0),
            evaluations=tuple(IndicatorEvaluation.from_dict(e) for e in evaluations) if evaluations else None
        )

    def to_dict(self) -> dict:
        data = {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume
        }
        if self.evaluations:
            data["evaluations"] = [e.to_dict() for e in self.evaluations]
        return data

    @property
    def time(self) -> datetime:
        return from_ms(self.timestamp)


def plan_batches(start_ms: int, end_ms: int, step_ms: int, max_candles: int) -> List[Tuple[int, int]]:
    """Split an aligned inclusive range into request windows.

    Each window holds at most ``max_candles`` candles and the next window
    starts exactly one interval after the previous one ends, so fetching
    the windows in order is equivalent to a single unbounded request.

    Args:
        start_ms: Aligned start timestamp
        end_ms: Aligned end timestamp
        step_ms: Interval length in milliseconds
        max_candles: Provider cap per request

    Returns:
        List of (batch_start, batch_end) tuples, both inclusive
    """
    batches = []
    current = start_ms
    while current <= end_ms:
        remaining = candle_count(current, end_ms, step_ms)
        size = min(remaining, max_candles)
        batch_end = min(current + (size - 1) * step_ms, end_ms)
        batches.append((current, batch_end))
        current = batch_end + step_ms
    return batches


def normalize_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Sort by timestamp and drop duplicate timestamps (first one wins)."""
    seen = set()
    ordered = []
    for candle in sorted(candles, key=lambda c: c.timestamp):
        if candle.timestamp in seen:
            continue
        seen.add(candle.timestamp)
        ordered.append(candle)
    return ordered


def generate_mock_candles(
    start_ms: int,
    end_ms: int,
    granularity: str,
    seed: Optional[int] = None,
    base_price: float = MOCK_BASE_PRICE,
    volatility: float = MOCK_VOLATILITY
) -> List[Candle]:
    """Synthesize a bounded random walk of candles. For testing only.

    Timestamps are spaced exactly by the granularity interval; prices never
    drop below ``base_price - 2 * volatility``.
    """
    step = interval_ms(granularity)
    rng = np.random.default_rng(seed)
    floor = base_price - volatility * 2

    candles = []
    previous_close = base_price
    current = start_ms
    while current <= end_ms:
        open_ = previous_close + (rng.random() - 0.5) * 500
        close = open_ + (rng.random() - 0.5) * 800
        high = max(open_, close) + rng.random() * 600
        low = min(open_, close) - rng.random() * 600
        candles.append(Candle(
            timestamp=current,
            open=max(floor, open_),
            high=max(floor, high),
            low=max(floor, low),
            close=max(floor, close),
            volume=1_000_000 + rng.random() * 5_000_000
        ))
        previous_close = close
        current += step
    return candles


def load_candles_from_file(
    file_path: str,
    start: Optional[TimeLike] = None,
    end: Optional[TimeLike] = None
) -> List[Candle]:
    """Load candles from a CSV or Parquet file.

    Required columns: timestamp, open, high, low, close (volume optional).
    Timestamps may be epoch milliseconds or any datetime pandas can parse.

    Raises:
        DataError: If the file cannot be read or holds unparseable values
        ValidationError: If required columns are missing
    """
    try:
        if str(file_path).lower().endswith(".parquet"):
            df = pd.read_parquet(file_path)
        else:
            df = pd.read_csv(file_path)
    except (OSError, ValueError) as e:
        raise DataError(f"Failed to read candle file {file_path}: {e}") from e

    required = ["timestamp", "open", "high", "low", "close"]
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValidationError(f"Candle file missing required columns: {missing}")

    if "volume" not in df.columns:
        df["volume"] = 0.0

    try:
        if pd.api.types.is_numeric_dtype(df["timestamp"]):
            df["timestamp"] = df["timestamp"].astype("int64")
        else:
            parsed = pd.to_datetime(df["timestamp"], utc=True)
            df["timestamp"] = (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)

        if start is not None:
            df = df[df["timestamp"] >= to_ms(start)]
        if end is not None:
            df = df[df["timestamp"] <= to_ms(end)]

        candles = [
            Candle(
                timestamp=int(row.timestamp),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume)
            )
            for row in df.itertuples(index=False)
        ]
    except (TypeError, ValueError) as e:
        raise DataError(f"Invalid candle data in {file_path}: {e}") from e
    return normalize_candles(candles)


class HistoricalDataLoader:
    """Loads ordered candles covering a requested range.

    Batches are fetched one at a time, never concurrently, to stay within
    provider rate limits. A failure in any batch fails the whole load: no
    partial candle list is ever returned.
    """

    def __init__(
        self,
        client: Optional[MarketApiClient] = None,
        max_candles_per_request: int = 200,
        allow_mock_fallback: bool = False,
        mock_seed: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize loader.

        Args:
            client: Market API client (a default client is created otherwise)
            max_candles_per_request: Provider cap per request
            allow_mock_fallback: Synthesize mock candles when the provider is
                unreachable. Never enable outside of testing.
            mock_seed: Seed for the mock generator
            logger: Optional logger
        """
        if max_candles_per_request < 1:
            raise ValidationError("max_candles_per_request must be >= 1")
        self.client = client or MarketApiClient()
        self.max_candles_per_request = max_candles_per_request
        self.allow_mock_fallback = allow_mock_fallback
        self.mock_seed = mock_seed
        self.logger = logger or logging.getLogger(__name__)

    def load(
        self,
        symbol: str,
        start: TimeLike,
        end: TimeLike,
        granularity: str,
        evaluators: Sequence[str] = (),
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None
    ) -> List[Candle]:
        """Load candles for [start, end].

        Args:
            symbol: Trading symbol
            start: Range start (datetime or epoch ms)
            end: Range end (datetime or epoch ms)
            granularity: Granularity name
            evaluators: Evaluator ids to attach to candles
            cancel_token: Checked before every batch
            progress: Receives a "batch k/n fetched" event after each batch

        Returns:
            Candles sorted by timestamp, without duplicates

        Raises:
            ValidationError: If start is not before end
            NetworkError: If any batch fails (and mock fallback is disabled)
            CancellationError: If cancellation was requested between batches
        """
        start_ms = to_ms(start)
        end_ms = to_ms(end)
        if start_ms >= end_ms:
            raise ValidationError("Invalid time range: start time must be before end time")

        wire_granularity = granularity_name(granularity)
        step = interval_ms(wire_granularity)
        aligned_start = align_down(start_ms, step)
        aligned_end = align_up(end_ms, step)

        try:
            return self._fetch(symbol, wire_granularity, aligned_start, aligned_end, step,
                               list(evaluators), cancel_token, progress or null_sink)
        except NetworkError as e:
            if not self.allow_mock_fallback:
                raise
            self.logger.warning(f"Provider unreachable ({e}); using fallback mock data for testing")
            return generate_mock_candles(aligned_start, aligned_end, wire_granularity, seed=self.mock_seed)

    def _fetch(
        self,
        symbol: str,
        granularity: str,
        aligned_start: int,
        aligned_end: int,
        step: int,
        evaluators: List[str],
        cancel_token: Optional[CancellationToken],
        progress: ProgressSink
    ) -> List[Candle]:
        total_candles = candle_count(aligned_start, aligned_end, step)
        batches = plan_batches(aligned_start, aligned_end, step, self.max_candles_per_request)

        self.logger.info(
            f"Loading {symbol} {granularity}: {to_iso(aligned_start)} to {to_iso(aligned_end)} "
            f"({total_candles} candles, {len(batches)} batch(es))"
        )

        results: List[Candle] = []
        for number, (batch_start, batch_end) in enumerate(batches, 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            raw = self.client.fetch_history(symbol, granularity, batch_start, batch_end, evaluators)
            try:
                results.extend(Candle.from_dict(item) for item in raw)
            except (KeyError, TypeError, ValueError) as e:
                raise NetworkError(f"Malformed candle in batch {number}/{len(batches)}: {e}") from e

            message = f"batch {number}/{len(batches)} fetched"
            self.logger.debug(f"{message} ({len(raw)} candles)")
            progress(ProgressEvent(
                stage=STAGE_LOADING,
                percent=number / len(batches) * 100,
                message=message
            ))

        candles = normalize_candles(results)
        if len(candles) != len(results):
            self.logger.warning(f"Dropped {len(results) - len(candles)} duplicate candle(s)")

        self.logger.info(f"Fetched {len(candles)} candles in {len(batches)} batch(es)")
        return candles

    def close(self):
        """Close the underlying API client."""
        self.client.close()


class FileDataLoader:
    """Loader over a local CSV/Parquet file, same interface as HistoricalDataLoader."""

    def __init__(self, file_path: str, logger: Optional[logging.Logger] = None):
        self.file_path = file_path
        self.logger = logger or logging.getLogger(__name__)

    def load(
        self,
        symbol: str,
        start: TimeLike,
        end: TimeLike,
        granularity: str,
        evaluators: Sequence[str] = (),
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None
    ) -> List[Candle]:
        if to_ms(start) >= to_ms(end):
            raise ValidationError("Invalid time range: start time must be before end time")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        candles = load_candles_from_file(self.file_path, start, end)
        self.logger.info(f"Loaded {len(candles)} {symbol} candles from {self.file_path}")
        (progress or null_sink)(ProgressEvent(stage=STAGE_LOADING, percent=100.0, message="file loaded"))
        return candles


class MockDataLoader:
    """Loader that always synthesizes mock candles. Selected explicitly, for testing only."""

    def __init__(self, seed: Optional[int] = None, logger: Optional[logging.Logger] = None):
        self.seed = seed
        self.logger = logger or logging.getLogger(__name__)

    def load(
        self,
        symbol: str,
        start: TimeLike,
        end: TimeLike,
        granularity: str,
        evaluators: Sequence[str] = (),
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None
    ) -> List[Candle]:
        start_ms, end_ms = to_ms(start), to_ms(end)
        if start_ms >= end_ms:
            raise ValidationError("Invalid time range: start time must be before end time")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        step = interval_ms(granularity)
        self.logger.warning(f"Using mock candles for {symbol}; results are not real market data")
        candles = generate_mock_candles(align_down(start_ms, step), align_up(end_ms, step),
                                        granularity, seed=self.seed)
        (progress or null_sink)(ProgressEvent(stage=STAGE_LOADING, percent=100.0, message="mock data generated"))
        return candles


def ensure_ordered(candles: Sequence[Candle]):
    """Raise DataError unless timestamps are strictly increasing."""
    for previous, current in zip(candles, candles[1:]):
        if current.timestamp <= previous.timestamp:
            raise DataError(
                f"Candles out of order or duplicated at {to_iso(current.timestamp)}"
            )


def close_loader(loader):
    """Release a loader's resources, for loaders that hold any."""
    close = getattr(loader, "close", None)
    if close is not None:
        close()
