"""Logging system for candlebt"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any


def setup_logger(name: str = "candlebt", log_dir: str = "logs", level: str = "INFO",
                 log_to_file: bool = True) -> logging.Logger:
    """
    Setup logger with file and console handlers.

    Log format: [TIMESTAMP] [LEVEL] [MODULE] Message
    Logs to: logs/candlebt_YYYY-MM-DD.log

    Args:
        name: Logger name
        log_dir: Directory for log files
        level: Console logging level (DEBUG, INFO, WARNING, ERROR)
        log_to_file: Also write detailed logs to a daily file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    detailed_formatter = logging.Formatter(
        fmt='[%(asctime)s] [%(levelname)8s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        fmt='[%(levelname)s] %(message)s'
    )

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # File handler (detailed logs)
        log_file = log_path / f"candlebt_{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    # Console handler (simple logs)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    return logger


def log_backtest_event(logger: logging.Logger, step: str, data: Dict[str, Any]):
    """
    Log a backtest lifecycle step with details.

    Steps:
    - LOAD_START: Candle request issued
    - LOAD_COMPLETE: All candles loaded
    - RUN_START: Simulation loop started
    - TRADE_OPEN: Position opened
    - TRADE_CLOSE: Position closed
    - RUN_COMPLETE: Simulation finished
    - CANCELLED: Run cancelled by the caller
    - ERROR: Run failed

    Args:
        logger: Logger instance
        step: Step name
        data: Step-specific data dictionary
    """
    if step == "LOAD_START":
        logger.info(f"=== NEW BACKTEST ===")
        logger.info(
            f"Symbol: {data.get('symbol')}, Granularity: {data.get('granularity')}, "
            f"Range: {data.get('start')} to {data.get('end')}"
        )
        if data.get('evaluators'):
            logger.debug(f"Evaluators: {', '.join(data['evaluators'])}")

    elif step == "LOAD_COMPLETE":
        logger.info(f"Data Loaded: {data.get('candles_count')} candles")

    elif step == "RUN_START":
        logger.info(f"Running {data.get('strategy')} over {data.get('candles_count')} candles")
        logger.debug(f"Starting Balance: {data.get('starting_balance'):,.2f}")

    elif step == "TRADE_OPEN":
        logger.debug(
            f"[{data.get('time')}] Opened {data.get('side')} x{data.get('quantity')} "
            f"@ {data.get('price'):.2f}"
        )

    elif step == "TRADE_CLOSE":
        logger.debug(
            f"[{data.get('time')}] Closed {data.get('side')} @ {data.get('price'):.2f} "
            f"({data.get('reason')}) - P&L: {data.get('pnl'):.2f}"
        )

    elif step == "RUN_COMPLETE":
        logger.info(
            f"Backtest Complete: {data.get('trades')} trades, "
            f"final balance {data.get('balance'):,.2f}"
        )
        logger.info(f"=== BACKTEST COMPLETE ===")

    elif step == "CANCELLED":
        logger.info(f"Backtest cancelled: {data.get('reason', '')}")
        logger.info(f"=== BACKTEST CANCELLED ===")

    elif step == "ERROR":
        error_msg = data.get('error', 'Unknown error')
        logger.error(f"Error during backtest: {error_msg}", exc_info=data.get('exc_info'))
        logger.info(f"=== BACKTEST FAILED ===")
