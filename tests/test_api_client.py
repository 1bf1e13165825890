"""Tests for MarketApiClient against a fake requests session."""

import pytest
import requests

from candlebt import api_client
from candlebt.api_client import MarketApiClient
from candlebt.exceptions import NetworkError

from conftest import T0


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeSession:
    """Replays a list of responses or exceptions, one per GET."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []
    monkeypatch.setattr(api_client.time, "sleep", delays.append)
    return delays


def candle_payload():
    return {"candles": [{"timestamp": T0, "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 3}]}


def test_fetch_history_sends_string_params():
    session = FakeSession([FakeResponse(candle_payload())])
    client = MarketApiClient(base_url="https://example.test/", timeout=5, session=session)

    candles = client.fetch_history("BTC-USD", "ONE_HOUR", T0, T0 + 3600000, ["rsi", "macd"])

    assert candles[0]["close"] == 1.5
    request = session.requests[0]
    assert request["url"] == "https://example.test/history"
    assert request["timeout"] == 5
    assert request["params"] == {
        "symbol": "BTC-USD",
        "granularity": "ONE_HOUR",
        "start_time": str(T0),
        "end_time": str(T0 + 3600000),
        "evaluators": "rsi,macd"
    }


def test_evaluators_omitted_when_empty():
    session = FakeSession([FakeResponse({"candles": []})])
    MarketApiClient(session=session).fetch_history("BTC-USD", "ONE_HOUR", T0, T0 + 1)
    assert "evaluators" not in session.requests[0]["params"]


def test_retries_with_exponential_backoff(no_sleep):
    session = FakeSession([
        requests.exceptions.ConnectionError("connection reset"),
        FakeResponse({}, status_code=503),
        FakeResponse(candle_payload()),
    ])
    client = MarketApiClient(max_retries=3, retry_delay=0.5, session=session)

    candles = client.fetch_history("BTC-USD", "ONE_HOUR", T0, T0 + 1)

    assert len(candles) == 1
    assert no_sleep == [0.5, 1.0]
    stats = client.get_stats()
    assert stats["total_requests"] == 1
    assert stats["failed_requests"] == 0
    assert stats["total_retry_count"] == 2
    assert stats["success_rate"] == 1.0


def test_exhausted_retries_raise_network_error(no_sleep):
    error = requests.exceptions.Timeout("timed out")
    session = FakeSession([error, error])
    client = MarketApiClient(max_retries=2, session=session)

    with pytest.raises(NetworkError) as exc_info:
        client.fetch_history("BTC-USD", "ONE_HOUR", T0, T0 + 1)

    assert exc_info.value.__cause__ is error
    assert len(session.requests) == 2
    assert client.get_stats()["failed_requests"] == 1
    assert client.get_stats()["success_rate"] == 0.0


def test_missing_candles_array_is_an_error(no_sleep):
    session = FakeSession([FakeResponse({"data": []})])
    client = MarketApiClient(max_retries=1, session=session)

    with pytest.raises(NetworkError, match="missing candles array"):
        client.fetch_history("BTC-USD", "ONE_HOUR", T0, T0 + 1)


def test_close_closes_session():
    session = FakeSession([])
    MarketApiClient(session=session).close()
    assert session.closed
