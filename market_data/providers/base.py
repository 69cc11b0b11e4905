"""
Provider interface for the Market Data Service.

A provider answers quote requests for one upstream source. The service owns
retry, fallback and caching; providers only translate one request into one
Quote / OptionChain or raise ProviderError / RateLimitExceeded.
"""
from abc import ABC, abstractmethod

from ..errors import ProviderError
from ..models import OptionChain, Quote


class QuoteProvider(ABC):
    """Base class for every upstream quote source."""

    name: str = "base"

    @abstractmethod
    def is_available(self) -> bool:
        """True if the provider can be asked right now (keys set, budget left)."""

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """Fetch one quote or raise ProviderError."""

    @property
    def supports_option_chain(self) -> bool:
        return type(self).get_option_chain is not QuoteProvider.get_option_chain

    def get_option_chain(self, symbol: str) -> OptionChain:
        raise ProviderError(self.name, "option chains not supported")
