"""API client for the market data provider's /history endpoint.

This module handles all HTTP communication with the provider, including
retries, timeouts, and response validation. It fetches exactly one batch
per call; splitting large ranges into batches is the loader's job.
"""

from typing import List, Optional, Sequence
import logging
import time

import requests

from .exceptions import NetworkError


class MarketApiClient:
    """Client for ``GET {base}/history``.

    Query parameters: symbol, granularity, start_time, end_time (integer
    milliseconds) and an optional comma-separated evaluators list. The
    response body is ``{"candles": [...]}``.
    """

    def __init__(
        self,
        base_url: str = "https://market.spotcanvas.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        logger: Optional[logging.Logger] = None,
        session: Optional[requests.Session] = None
    ):
        """Initialize API client.

        Args:
            base_url: Base URL of the provider
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts per batch
            retry_delay: Base delay between retries in seconds (doubles each retry)
            logger: Optional logger for request/response logging
            session: Optional requests session (a new one is created otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.logger = logger or logging.getLogger(__name__)

        # Reuse connections across batches
        self.session = session or requests.Session()

        # Stats tracking
        self.total_requests = 0
        self.failed_requests = 0
        self.total_retry_count = 0

    def fetch_history(
        self,
        symbol: str,
        granularity: str,
        start_ms: int,
        end_ms: int,
        evaluators: Sequence[str] = ()
    ) -> List[dict]:
        """Fetch one batch of raw candle dicts.

        Args:
            symbol: Trading symbol (e.g., "BTC-USD")
            granularity: Granularity name (e.g., "ONE_HOUR")
            start_ms: Inclusive start timestamp in milliseconds
            end_ms: Inclusive end timestamp in milliseconds
            evaluators: Evaluator ids to attach to candles

        Returns:
            List of candle dictionaries as returned by the provider

        Raises:
            NetworkError: If the batch cannot be fetched after retries
        """
        params = {
            "symbol": symbol,
            "granularity": granularity,
            "start_time": str(int(start_ms)),
            "end_time": str(int(end_ms))
        }
        if evaluators:
            params["evaluators"] = ",".join(evaluators)

        return self._request(params)

    def _request(self, params: dict) -> List[dict]:
        """Make GET request to /history with retries.

        Args:
            params: Query parameters

        Returns:
            The candles array from the response

        Raises:
            NetworkError: If request fails after retries
        """
        url = f"{self.base_url}/history"
        self.total_requests += 1
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                self.logger.debug(f"GET /history (attempt {attempt + 1}/{self.max_retries}) {params}")

                response = self.session.get(url, params=params, timeout=self.timeout)

                # Check for HTTP errors
                response.raise_for_status()

                data = response.json()
                candles = data.get("candles") if isinstance(data, dict) else None
                if not isinstance(candles, list):
                    raise ValueError("Invalid API response: missing candles array")

                self.logger.debug(f"API returned {len(candles)} candles")
                return candles

            except (requests.exceptions.RequestException, ValueError) as e:
                last_error = e
                self.logger.warning(f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}")

                if attempt < self.max_retries - 1:
                    # Retry with exponential backoff
                    delay = self.retry_delay * (2 ** attempt)
                    self.logger.debug(f"Retrying in {delay:.1f}s...")
                    time.sleep(delay)
                    self.total_retry_count += 1

        self.failed_requests += 1
        self.logger.error(f"Request failed after {self.max_retries} attempts")
        raise NetworkError(f"Failed to fetch candles from {url}: {last_error}") from last_error

    def get_stats(self) -> dict:
        """Get client statistics.

        Returns:
            Dictionary with total_requests, failed_requests, total_retry_count, success_rate
        """
        return {
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "total_retry_count": self.total_retry_count,
            "success_rate": (self.total_requests - self.failed_requests) / max(self.total_requests, 1)
        }

    def close(self):
        """Close the HTTP session and release resources."""
        self.session.close()
