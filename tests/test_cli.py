"""Tests for the command-line interface."""

import pytest

from candlebt import cli
from candlebt.cli import EXIT_CANCELLED, EXIT_ERROR, EXIT_OK, build_config, main, parse_args, parse_params
from candlebt.exceptions import CancellationError, NetworkError
from candlebt.strategies import RSIStrategy

from conftest import FakeLoader, make_candles


def test_parse_params_decodes_json_values():
    assert parse_params(["fast_period=10", "use_stop_loss=true", "label=abc", "ratio=2.5"]) == {
        "fast_period": 10,
        "use_stop_loss": True,
        "label": "abc",
        "ratio": 2.5
    }
    with pytest.raises(ValueError):
        parse_params(["oops"])


def test_build_config_from_arguments():
    args = parse_args(["--start", "2024-01-01", "--end", "2024-01-10", "--strategy", "rsi",
                       "--param", "period=7", "--evaluator", "macd", "--no-liquidate",
                       "--max-range-days", "0"])
    config = build_config(args)

    assert isinstance(config.strategy, RSIStrategy)
    assert config.strategy.period == 7
    assert config.all_evaluator_ids() == ["macd", "rsi"]
    assert config.liquidate_at_end is False
    assert config.max_range_days is None


def test_build_config_requires_dates():
    with pytest.raises(ValueError):
        build_config(parse_args([]))


def test_main_with_mock_source(tmp_path):
    code = main(["--source", "mock", "--mock-seed", "3", "--start", "2024-01-01", "--end", "2024-01-05",
                 "--param", "fast_period=2", "--param", "slow_period=5", "--output-dir", str(tmp_path)])

    assert code == EXIT_OK
    names = sorted(p.name.split("_")[-1] for p in tmp_path.iterdir())
    assert names == ["equity.csv", "result.json", "summary.txt", "trades.csv"]


def test_main_rejects_invalid_configuration(tmp_path):
    code = main(["--source", "mock", "--start", "2024-01-05", "--end", "2024-01-01",
                 "--output-dir", str(tmp_path)])
    assert code == EXIT_ERROR


def test_main_missing_candle_file_returns_error(tmp_path):
    code = main(["--source", "csv", "--file", str(tmp_path / "missing.csv"),
                 "--start", "2024-01-01", "--end", "2024-01-02", "--no-save"])
    assert code == EXIT_ERROR


def test_main_malformed_candle_file_returns_error(tmp_path):
    path = tmp_path / "candles.csv"
    path.write_text(
        "timestamp,open,high,low,close\n"
        "2024-01-01 00:00:00,1,2,0.5,abc\n"
    )
    code = main(["--source", "csv", "--file", str(path),
                 "--start", "2024-01-01", "--end", "2024-01-02", "--no-save"])
    assert code == EXIT_ERROR


@pytest.mark.parametrize("error, expected", [
    (NetworkError("Failed to fetch candles: timeout"), EXIT_ERROR),
    (CancellationError(), EXIT_CANCELLED),
    (None, EXIT_OK)
])
def test_main_closes_loader_on_every_exit(monkeypatch, tmp_path, error, expected):
    loader = FakeLoader(make_candles([100, 101, 102]), error=error)
    monkeypatch.setattr(cli, "build_loader", lambda config, logger=None: loader)

    code = main(["--start", "2024-01-01", "--end", "2024-01-02", "--no-save",
                 "--param", "fast_period=2", "--param", "slow_period=3"])

    assert code == expected
    assert loader.closed
