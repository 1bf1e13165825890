"""candlebt - candle-by-candle strategy backtesting.

This package replays historical OHLCV candles through a strategy:
- Loads candles from a market data provider in sequential batches (or from CSV/Parquet)
- Calls the strategy once per candle with only the candles seen so far
- Keeps a single-position account ledger and equity/drawdown curves
- Computes performance metrics and exports trades and results

Usage:
    python -m candlebt --symbol BTC-USD --granularity ONE_HOUR --start 2024-01-01 --end 2024-03-01

Package structure:
- config: BacktestConfig, MarketDataConfig and environment settings
- data_source: Candle and the historical/file/mock loaders
- api_client: MarketApiClient for the provider's /history endpoint
- strategy / strategies: Strategy contract and built-in strategies
- ledger: Account ledger, positions and completed trades
- engine: BacktestEngine (single-use execution state machine)
- metrics: PerformanceMetrics
- runner: BacktestRunner exposing observable run state
- reporting: CSV/JSON export and summaries
- cli: Command-line interface
"""

__version__ = "1.0.0"

from .config import BacktestConfig, MarketDataConfig, build_loader
from .data_source import (
    Candle,
    HistoricalDataLoader,
    FileDataLoader,
    MockDataLoader,
    generate_mock_candles,
    load_candles_from_file
)
from .api_client import MarketApiClient
from .evaluators import EvaluatorConfig, SchemaValidator
from .exceptions import (
    BacktestError,
    ValidationError,
    NetworkError,
    DataError,
    CancellationError,
    StrategyError,
    EngineStateError
)
from .granularity import Granularity
from .ledger import Side, ExitReason, Position, CompletedTrade, AccountSnapshot
from .progress import CancellationToken, ProgressEvent
from .strategy import Signal, SignalType, Strategy, FunctionStrategy, HOLD, EXIT
from .strategies import SMACrossoverStrategy, RSIStrategy, create_strategy
from .metrics import PerformanceMetrics
from .engine import BacktestEngine, BacktestResult, EngineState
from .runner import BacktestRunner, BacktestState
from .reporting import BacktestReporter

__all__ = [
    "__version__",
    "BacktestConfig",
    "MarketDataConfig",
    "build_loader",
    "Candle",
    "HistoricalDataLoader",
    "FileDataLoader",
    "MockDataLoader",
    "generate_mock_candles",
    "load_candles_from_file",
    "MarketApiClient",
    "EvaluatorConfig",
    "SchemaValidator",
    "BacktestError",
    "ValidationError",
    "NetworkError",
    "DataError",
    "CancellationError",
    "StrategyError",
    "EngineStateError",
    "Granularity",
    "Side",
    "ExitReason",
    "Position",
    "CompletedTrade",
    "AccountSnapshot",
    "CancellationToken",
    "ProgressEvent",
    "Signal",
    "SignalType",
    "Strategy",
    "FunctionStrategy",
    "HOLD",
    "EXIT",
    "SMACrossoverStrategy",
    "RSIStrategy",
    "create_strategy",
    "PerformanceMetrics",
    "BacktestEngine",
    "BacktestResult",
    "EngineState",
    "BacktestRunner",
    "BacktestState",
    "BacktestReporter"
]
