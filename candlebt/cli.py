"""Command-line interface for running backtests."""

import argparse
import json
import logging
import signal
from typing import Dict, List, Optional

from .config import (
    BacktestConfig,
    MarketDataConfig,
    MARKET_API_MAX_RETRIES,
    MARKET_API_TIMEOUT,
    MARKET_API_URL,
    MAX_CANDLES_PER_REQUEST,
    build_loader
)
from .data_source import HistoricalDataLoader, close_loader
from .engine import BacktestEngine
from .evaluators import SchemaValidator
from .exceptions import BacktestError, CancellationError
from .progress import CancellationToken, ProgressEvent, STAGE_LOADING
from .reporting import BacktestReporter
from .strategies import STRATEGIES, create_strategy

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="candlebt - candle-by-candle strategy backtesting",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Config file (overrides run arguments)
    parser.add_argument("--config", type=str, help="Path to JSON config file (overrides run arguments)")

    # Run definition
    parser.add_argument("--symbol", type=str, default="BTC-USD", help="Trading symbol")
    parser.add_argument("--granularity", type=str, default="ONE_HOUR",
                        help="Candle granularity (ONE_MINUTE, FIVE_MINUTES, ..., ONE_DAY)")
    parser.add_argument("--start", type=str, help="Start date (YYYY-MM-DD or ISO-8601)")
    parser.add_argument("--end", type=str, help="End date (YYYY-MM-DD or ISO-8601)")
    parser.add_argument("--balance", type=float, default=10000.0, help="Starting balance")
    parser.add_argument("--strategy", type=str, default="sma", choices=sorted(STRATEGIES),
                        help="Built-in strategy")
    parser.add_argument("--param", action="append", default=[], metavar="KEY=VALUE",
                        help="Strategy parameter (repeatable), e.g. --param fast_period=10")
    parser.add_argument("--evaluator", action="append", default=[], metavar="ID",
                        help="Extra evaluator to request from the provider (repeatable)")
    parser.add_argument("--no-liquidate", action="store_true",
                        help="Leave a position open at the end instead of closing it at the last close")
    parser.add_argument("--max-range-days", type=float, default=365,
                        help="Longest allowed date range in days (0 disables the check)")

    # Data source
    parser.add_argument("--source", type=str, default="api", choices=["api", "csv", "parquet", "mock"],
                        help="Data source type")
    parser.add_argument("--file", type=str, help="Path to CSV/Parquet file (required for csv/parquet source)")
    parser.add_argument("--api-url", type=str, default=MARKET_API_URL, help="Market data API base URL")
    parser.add_argument("--api-timeout", type=float, default=MARKET_API_TIMEOUT, help="API request timeout (seconds)")
    parser.add_argument("--api-max-retries", type=int, default=MARKET_API_MAX_RETRIES,
                        help="Max attempts per batch")
    parser.add_argument("--max-candles", type=int, default=MAX_CANDLES_PER_REQUEST,
                        help="Max candles per provider request")
    parser.add_argument("--allow-mock-fallback", action="store_true",
                        help="Use mock candles if the provider is unreachable (testing only)")
    parser.add_argument("--mock-seed", type=int, help="Seed for mock candles")
    parser.add_argument("--schemas", type=str, help="Path to evaluator schema JSON for parameter validation")

    # Output settings
    parser.add_argument("--output-dir", type=str, default="./backtest_results",
                        help="Output directory for results")
    parser.add_argument("--no-save", action="store_true", help="Don't write any result files")
    parser.add_argument("--no-save-trades", action="store_true", help="Don't save trades CSV")
    parser.add_argument("--no-save-equity", action="store_true", help="Don't save equity curve CSV")
    parser.add_argument("--no-save-json", action="store_true", help="Don't save JSON result")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def setup_logging(verbose: bool = False):
    """Setup logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def parse_params(items: List[str]) -> Dict[str, object]:
    """Parse KEY=VALUE pairs; values are JSON-decoded when possible (10, 2.5, true)."""
    params = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"Invalid parameter '{item}', expected KEY=VALUE")
        key, value = item.split("=", 1)
        try:
            params[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            params[key.strip()] = value
    return params


def build_config(args) -> BacktestConfig:
    """Create the run configuration from a JSON file or the CLI arguments."""
    if args.config:
        return BacktestConfig.from_json(args.config)

    if not args.start or not args.end:
        raise ValueError("--start and --end are required unless --config is given")

    strategy = create_strategy(args.strategy, symbol=args.symbol, params=parse_params(args.param))
    return BacktestConfig(
        symbol=args.symbol,
        start_date=args.start,
        end_date=args.end,
        strategy=strategy,
        granularity=args.granularity,
        starting_balance=args.balance,
        evaluators=list(args.evaluator),
        liquidate_at_end=not args.no_liquidate,
        max_range_days=args.max_range_days or None
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
        market_config = MarketDataConfig(
            api_url=args.api_url,
            timeout=args.api_timeout,
            max_retries=args.api_max_retries,
            max_candles_per_request=args.max_candles,
            allow_mock_fallback=args.allow_mock_fallback,
            mock_seed=args.mock_seed,
            source=args.source,
            file_path=args.file
        )
        validator = SchemaValidator.from_json(args.schemas) if args.schemas else None
    except (ValueError, KeyError, OSError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_ERROR

    loader = build_loader(market_config, logger=logger)
    try:
        return run_backtest(args, config, loader, validator, logger)
    finally:
        close_loader(loader)


def run_backtest(args: argparse.Namespace, config: BacktestConfig, loader, validator, logger: logging.Logger) -> int:
    """Run the configured backtest, then save and print its results."""
    engine = BacktestEngine(loader=loader, validator=validator, logger=logger)
    token = CancellationToken()

    def on_progress(event: ProgressEvent):
        if event.stage == STAGE_LOADING:
            logger.info(f"Loading: {event.message or f'{event.percent:.0f}%'}")
        else:
            logger.info(f"Progress: {event.percent:.1f}%")

    def on_interrupt(signum, frame):
        logger.warning("Interrupt received, cancelling backtest...")
        token.cancel()

    previous_handler = signal.signal(signal.SIGINT, on_interrupt)
    try:
        result = engine.run(config, cancel_token=token, progress=on_progress)
    except CancellationError as e:
        logger.warning(str(e))
        return EXIT_CANCELLED
    except BacktestError as e:
        logger.error(f"Backtest failed: {e}", exc_info=args.verbose)
        return EXIT_ERROR
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    reporter = BacktestReporter(output_dir=args.output_dir, logger=logger)
    if not args.no_save:
        reporter.save_results(
            result,
            save_trades=not args.no_save_trades,
            save_equity=not args.no_save_equity,
            save_json=not args.no_save_json
        )
    reporter.print_summary(result)

    # Print API client stats
    if isinstance(loader, HistoricalDataLoader):
        api_stats = loader.client.get_stats()
        logger.info("=" * 70)
        logger.info("API CLIENT STATISTICS")
        logger.info("=" * 70)
        logger.info(f"Total Requests: {api_stats['total_requests']}")
        logger.info(f"Failed Requests: {api_stats['failed_requests']}")
        logger.info(f"Total Retries: {api_stats['total_retry_count']}")
        logger.info(f"Success Rate: {api_stats['success_rate'] * 100:.2f}%")
        logger.info("=" * 70)

    logger.info("Backtest complete!")
    return EXIT_OK


if __name__ == "__main__":
    exit(main())
