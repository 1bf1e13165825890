"""Backtest configuration settings using dataclasses.

Environment-level settings (provider URL, HTTP service host/port, logging)
are read once at import, after loading a ``.env`` file if present.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union
import json
import os

from dotenv import load_dotenv

from .data_source import FileDataLoader, HistoricalDataLoader, MockDataLoader
from .api_client import MarketApiClient
from .evaluators import EvaluatorConfig
from .exceptions import ValidationError
from .granularity import Granularity, granularity_name
from .strategies import STRATEGIES, create_strategy
from .strategy import Strategy
from .utils.helpers import parse_date, to_ms

# Load environment variables from .env file
load_dotenv()

# Market data provider
MARKET_API_URL = os.getenv("MARKET_API_URL", "https://market.spotcanvas.com")
MARKET_API_TIMEOUT = float(os.getenv("MARKET_API_TIMEOUT", "30"))
MARKET_API_MAX_RETRIES = int(os.getenv("MARKET_API_MAX_RETRIES", "3"))
MAX_CANDLES_PER_REQUEST = int(os.getenv("MAX_CANDLES_PER_REQUEST", "200"))

# API Settings
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
MAX_JOBS = int(os.getenv("MAX_JOBS", "100"))  # finished jobs beyond this are evicted, oldest first

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

DAY_SECONDS = 24 * 60 * 60

DateLike = Union[datetime, str]


def _coerce_date(value: DateLike, name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_date(value)
        except ValueError as e:
            raise ValidationError(f"Invalid {name}: {value}") from e
    raise ValidationError(f"Invalid {name}: {value!r}")


@dataclass
class BacktestConfig:
    """Configuration for one backtest run.

    The strategy is injected as a value; its required evaluators are merged
    with ``evaluators`` when candles are requested.
    """

    symbol: str
    start_date: DateLike
    end_date: DateLike
    strategy: Strategy
    granularity: str = Granularity.ONE_HOUR.value
    starting_balance: float = 10000.0
    evaluators: List[Union[str, EvaluatorConfig]] = field(default_factory=list)

    # Close a position left open after the last candle at its close price
    liquidate_at_end: bool = True

    # Longest allowed range in days (None disables the check)
    max_range_days: Optional[float] = 365

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.start_date = _coerce_date(self.start_date, "start_date")
        self.end_date = _coerce_date(self.end_date, "end_date")
        self.granularity = granularity_name(self.granularity)
        self.evaluators = [EvaluatorConfig.coerce(e) for e in self.evaluators]

        if not self.symbol or not self.symbol.strip():
            raise ValidationError("Symbol is required")

        if not isinstance(self.strategy, Strategy):
            raise ValidationError("A strategy is required")

        start_ms, end_ms = to_ms(self.start_date), to_ms(self.end_date)
        if start_ms >= end_ms:
            raise ValidationError("End date must be after start date")

        if self.max_range_days is not None and (end_ms - start_ms) / 1000 > self.max_range_days * DAY_SECONDS:
            raise ValidationError(f"Date range cannot exceed {self.max_range_days:g} days")

        if self.starting_balance <= 0:
            raise ValidationError("Starting balance must be positive")

    def all_evaluators(self) -> List[EvaluatorConfig]:
        """Configured evaluators plus the strategy's required ones, without duplicates."""
        merged = list(self.evaluators)
        seen = {e.id for e in merged}
        for evaluator_id in self.strategy.required_evaluators():
            if evaluator_id not in seen:
                seen.add(evaluator_id)
                merged.append(EvaluatorConfig(id=evaluator_id))
        return merged

    def all_evaluator_ids(self) -> List[str]:
        return [e.id for e in self.all_evaluators()]

    @classmethod
    def from_dict(cls, data: dict) -> "BacktestConfig":
        """Create a config from a plain dict.

        ``strategy`` is either a Strategy or ``{"type": "sma", "params": {...}}``
        resolved through the strategy registry.
        """
        data = dict(data)
        strategy = data.get("strategy")
        if isinstance(strategy, dict):
            try:
                data["strategy"] = create_strategy(
                    strategy.get("type", ""),
                    symbol=data.get("symbol", ""),
                    params=strategy.get("params")
                )
            except ValueError as e:
                raise ValidationError(str(e)) from e
        try:
            return cls(**data)
        except TypeError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_json(cls, filepath: str) -> "BacktestConfig":
        """Load configuration from JSON file.

        Args:
            filepath: Path to JSON config file

        Returns:
            BacktestConfig instance

        Example JSON:
            {
                "symbol": "BTC-USD",
                "start_date": "2024-01-01",
                "end_date": "2024-03-01",
                "granularity": "ONE_HOUR",
                "starting_balance": 10000,
                "strategy": {"type": "sma", "params": {"fast_period": 10, "slow_period": 30}},
                "evaluators": ["moving-averages"]
            }
        """
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        strategy = {"type": type(self.strategy).__name__, "name": self.strategy.name}
        for key, strategy_cls in STRATEGIES.items():
            if type(self.strategy) is strategy_cls:
                strategy = {"type": key, "params": _strategy_params(self.strategy)}

        return {
            "symbol": self.symbol,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "granularity": self.granularity,
            "starting_balance": self.starting_balance,
            "strategy": strategy,
            "evaluators": [e.to_dict() for e in self.evaluators],
            "liquidate_at_end": self.liquidate_at_end,
            "max_range_days": self.max_range_days
        }

    def to_json(self, filepath: str):
        """Save configuration to JSON file.

        Registered strategies are written as ``{"type", "params"}`` so the
        file loads back with ``from_json``.
        """
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def _strategy_params(strategy: Strategy) -> dict:
    return {
        key: value for key, value in vars(strategy).items()
        if key not in ("symbol", "name") and not key.startswith("_")
    }


@dataclass
class MarketDataConfig:
    """Where candles come from and how the provider is reached."""

    api_url: str = MARKET_API_URL
    timeout: float = MARKET_API_TIMEOUT
    max_retries: int = MARKET_API_MAX_RETRIES
    retry_delay: float = 1.0
    max_candles_per_request: int = MAX_CANDLES_PER_REQUEST

    # Synthesize mock candles when the provider is unreachable. Testing only.
    allow_mock_fallback: bool = False
    mock_seed: Optional[int] = None

    source: str = "api"  # "api", "csv", "parquet" or "mock"
    file_path: Optional[str] = None

    def __post_init__(self):
        if self.source not in ("api", "csv", "parquet", "mock"):
            raise ValidationError(f"source must be 'api', 'csv', 'parquet' or 'mock', got: {self.source}")
        if self.source in ("csv", "parquet") and not self.file_path:
            raise ValidationError(f"file_path is required for source '{self.source}'")
        if self.max_candles_per_request < 1:
            raise ValidationError("max_candles_per_request must be >= 1")
        if self.max_retries < 1:
            raise ValidationError("max_retries must be >= 1")


def build_loader(config: MarketDataConfig, logger=None):
    """Create the candle loader selected by ``config.source``."""
    if config.source in ("csv", "parquet"):
        return FileDataLoader(config.file_path, logger=logger)
    if config.source == "mock":
        return MockDataLoader(seed=config.mock_seed, logger=logger)

    client = MarketApiClient(
        base_url=config.api_url,
        timeout=config.timeout,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        logger=logger
    )
    return HistoricalDataLoader(
        client=client,
        max_candles_per_request=config.max_candles_per_request,
        allow_mock_fallback=config.allow_mock_fallback,
        mock_seed=config.mock_seed,
        logger=logger
    )
