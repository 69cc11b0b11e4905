"""
Quote providers, addressable by name for the configured fallback order.
"""
import logging
from typing import Iterable, List

from .alpha_vantage_provider import AlphaVantageProvider
from .base import QuoteProvider
from .mock_provider import MockProvider
from .yfinance_provider import YFinanceProvider

logger = logging.getLogger(__name__)

PROVIDER_TYPES = {
    AlphaVantageProvider.name: AlphaVantageProvider,
    YFinanceProvider.name: YFinanceProvider,
    MockProvider.name: MockProvider,
}


def build_providers(names: Iterable[str]) -> List[QuoteProvider]:
    """Instantiate providers in the given order, skipping unknown names."""
    providers: List[QuoteProvider] = []
    for name in names:
        provider_type = PROVIDER_TYPES.get(name)
        if provider_type is None:
            logger.warning(f"Unknown market data provider '{name}', skipped")
            continue
        providers.append(provider_type())
    return providers


__all__ = [
    "AlphaVantageProvider",
    "MockProvider",
    "QuoteProvider",
    "YFinanceProvider",
    "build_providers",
]
