"""
Alpha Vantage provider: equity quotes via the GLOBAL_QUOTE endpoint.
Source: alphavantage.co (free tier: 5 requests/minute, 500 requests/day).
Rate-limit payloads ("Note" / "Information") and HTTP 429 surface as
RateLimitExceeded so the service skips straight to the next provider.
"""
import logging
import time
from datetime import datetime
from typing import Callable, Optional

import requests

from ..config import (
    ALPHA_VANTAGE_API_KEY,
    ALPHA_VANTAGE_BASE_URL,
    ALPHA_VANTAGE_REQUESTS_PER_MINUTE,
    HTTP_TIMEOUT_SECONDS,
)
from ..errors import ProviderError, RateLimitExceeded
from ..models import Quote
from .base import QuoteProvider

logger = logging.getLogger(__name__)


class AlphaVantageProvider(QuoteProvider):
    """
    Fetches equity quotes from Alpha Vantage.
    Keeps its own per-minute request budget and reports unavailable once spent.
    """

    name = "alphavantage"

    def __init__(
        self,
        api_key: str = ALPHA_VANTAGE_API_KEY,
        base_url: str = ALPHA_VANTAGE_BASE_URL,
        max_requests_per_minute: int = ALPHA_VANTAGE_REQUESTS_PER_MINUTE,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._max_requests = max_requests_per_minute
        self._session = session or requests.Session()
        self._clock = clock
        self._request_count = 0
        self._window_start = clock()

        if not api_key:
            logger.info(
                "Alpha Vantage: ALPHA_VANTAGE_API_KEY not configured, provider disabled. "
                "Add it to .env to enable."
            )

    def is_available(self) -> bool:
        return bool(self._api_key) and not self._is_rate_limited()

    def get_quote(self, symbol: str) -> Quote:
        if self._is_rate_limited():
            raise RateLimitExceeded(self.name, "per-minute request budget spent")

        self._request_count += 1
        params = {"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self._api_key}

        try:
            response = self._session.get(self._base_url, params=params, timeout=HTTP_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitExceeded(self.name, "HTTP 429")
        if not response.ok:
            raise ProviderError(self.name, f"API error: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(self.name, "invalid JSON response") from exc

        return self._parse_global_quote(symbol, data)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_global_quote(self, symbol: str, data: dict) -> Quote:
        if "Error Message" in data:
            raise ProviderError(self.name, data["Error Message"])
        if "Note" in data or "Information" in data:
            raise RateLimitExceeded(self.name, data.get("Note") or data.get("Information"))

        quote = data.get("Global Quote")
        if not quote:
            raise ProviderError(self.name, "invalid response format")

        try:
            price = float(quote["05. price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, "invalid price data") from exc

        return Quote(
            symbol=symbol,
            price=price,
            change=_to_float(quote.get("09. change")),
            change_percent=_to_float(str(quote.get("10. change percent", "0")).rstrip("%")),
            volume=int(_to_float(quote.get("06. volume"))),
            timestamp=datetime.now(),
            source=self.name,
        )

    def _is_rate_limited(self) -> bool:
        now = self._clock()
        if now - self._window_start > 60:
            self._request_count = 0
            self._window_start = now
        return self._request_count >= self._max_requests


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
