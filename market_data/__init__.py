"""
Market Data Service for the real-time P&L pipeline.

Usage:
    from market_data import MarketDataService
    service = MarketDataService()

    # Single quote with provider fallback
    quote = service.get_quote("MSTY")

    # Batched quotes; symbols that cannot be quoted are omitted
    quotes = service.get_multiple_quotes(["MSTY", "PLTY", "TSLY"])

    # Option chain from the first provider that supports chains
    chain = service.get_option_chain("TSLY")
"""
from .cache import LRUCache, TTLCache
from .errors import MarketDataError, MarketDataUnavailable, ProviderError, RateLimitExceeded
from .models import BatchedUpdate, OptionChain, OptionQuote, PriceUpdate, Quote
from .service import MarketDataService

__all__ = [
    "BatchedUpdate",
    "LRUCache",
    "MarketDataError",
    "MarketDataService",
    "MarketDataUnavailable",
    "OptionChain",
    "OptionQuote",
    "PriceUpdate",
    "ProviderError",
    "Quote",
    "RateLimitExceeded",
    "TTLCache",
]
