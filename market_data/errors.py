"""
Typed market data failures.

Provider errors are converted to these at the gateway boundary; only
MarketDataUnavailable ever reaches a caller of MarketDataService.
"""
from typing import Optional


class MarketDataError(Exception):
    """Base class for market data failures."""


class ProviderError(MarketDataError):
    """A single provider call failed. Retried by the gateway."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class RateLimitExceeded(ProviderError):
    """Provider signalled a rate limit. The gateway moves on without retrying."""

    def __init__(self, provider: str, message: str = "rate limit exceeded"):
        super().__init__(provider, message)


class MarketDataUnavailable(MarketDataError):
    """Every configured provider failed or was unavailable for this request."""

    def __init__(self, symbol: str, detail: Optional[str] = None):
        message = f"Market data unavailable for {symbol}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.symbol = symbol
