"""
MarketDataService: single entry point for quote data in the pipeline.

Public methods:
  get_quote()            → Quote              (provider fallback + retry + TTL cache)
  get_option_chain()     → OptionChain
  get_multiple_quotes()  → Dict[str, Quote]   (chunked, missing symbols omitted)

  get_price_dict()       → Dict[str, float | None]  convenience for price-only callers

Pure Python, no Streamlit imports. Reusable by any app.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, TypeVar

from .cache import TTLCache
from .config import (
    CACHE_TTL_SECONDS,
    PROVIDER_ORDER,
    QUOTE_BATCH_DELAY_SECONDS,
    QUOTE_BATCH_SIZE,
    RETRY_ATTEMPTS,
    RETRY_DELAY_SECONDS,
)
from .errors import MarketDataUnavailable, RateLimitExceeded
from .models import OptionChain, Quote
from .providers import QuoteProvider, build_providers

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketDataService:
    """
    Quote gateway over an ordered provider list (primary first, then fallbacks).

    Construct once in the composition root and pass it to consumers.
    The internal TTL cache prevents redundant provider calls across ticks.
    """

    def __init__(
        self,
        providers: Optional[List[QuoteProvider]] = None,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        batch_size: int = QUOTE_BATCH_SIZE,
        batch_delay: float = QUOTE_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._providers = list(providers) if providers is not None else build_providers(PROVIDER_ORDER)
        self._cache = TTLCache(ttl_seconds=cache_ttl_seconds, clock=clock)
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay
        self._sleep = sleep

    @property
    def providers(self) -> List[QuoteProvider]:
        return list(self._providers)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_quote(self, symbol: str) -> Quote:
        """
        Return a quote for symbol from the first provider that answers.

        Raises:
            MarketDataUnavailable: every provider failed or was unavailable.
        """
        cache_key = f"quote_{symbol}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        quote = self._first_successful(
            symbol, lambda provider: provider.get_quote(symbol), what="quote"
        )
        self._cache.set(cache_key, quote)
        return quote

    # Same contract, kept under the name the risk dashboards used.
    get_stock_quote = get_quote

    def get_option_chain(self, symbol: str) -> OptionChain:
        """
        Return the option chain for symbol from the first capable provider.

        Raises:
            MarketDataUnavailable: no provider could supply a chain.
        """
        cache_key = f"options_{symbol}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        chain = self._first_successful(
            symbol,
            lambda provider: provider.get_option_chain(symbol),
            what="option chain",
            only=lambda provider: provider.supports_option_chain,
        )
        self._cache.set(cache_key, chain)
        return chain

    def get_multiple_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Fetch quotes in fixed-size chunks with a pause between chunks.
        A symbol that cannot be quoted is simply absent from the result.
        """
        results: Dict[str, Quote] = {}
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return results

        with ThreadPoolExecutor(max_workers=self._batch_size) as pool:
            for start in range(0, len(unique), self._batch_size):
                chunk = unique[start:start + self._batch_size]
                for symbol, quote in zip(chunk, pool.map(self._quote_or_none, chunk)):
                    if quote is not None:
                        results[symbol] = quote

                if start + self._batch_size < len(unique):
                    self._sleep(self._batch_delay)

        return results

    def get_price_dict(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        """Returns Dict[symbol → price | None]."""
        quotes = self.get_multiple_quotes(symbols)
        return {s: (quotes[s].price if s in quotes else None) for s in symbols}

    def is_market_data_available(self) -> bool:
        """True if the primary provider can currently be asked."""
        if not self._providers:
            return False
        return self._probe(self._providers[0])

    def get_provider_status(self) -> Dict[str, bool]:
        return {provider.name: self._probe(provider) for provider in self._providers}

    def clear_cache(self) -> None:
        """Force-clear the cache so next call fetches fresh data."""
        self._cache.clear()
        logger.info("MarketDataService: cache cleared.")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _quote_or_none(self, symbol: str) -> Optional[Quote]:
        try:
            return self.get_quote(symbol)
        except MarketDataUnavailable as exc:
            logger.error(f"Failed to get quote for {symbol}: {exc}")
            return None

    def _first_successful(
        self,
        symbol: str,
        fetch: Callable[[QuoteProvider], T],
        what: str,
        only: Callable[[QuoteProvider], bool] = lambda provider: True,
    ) -> T:
        for provider in self._providers:
            if not only(provider):
                continue
            if not self._probe(provider):
                logger.debug(f"MarketData: {provider.name} unavailable, skipping {symbol}")
                continue

            try:
                result = self._retry(lambda: fetch(provider))
            except RateLimitExceeded as exc:
                logger.warning(f"MarketData: {provider.name} rate limited for {symbol}: {exc}")
                continue
            except Exception as exc:
                logger.warning(f"MarketData: provider {provider.name} failed for {what} {symbol}: {exc}")
                continue

            logger.info(f"MarketData: got {what} for {symbol} from {provider.name}")
            return result

        raise MarketDataUnavailable(symbol, what if what != "quote" else None)

    def _retry(self, operation: Callable[[], T]) -> T:
        """Run operation up to retry_attempts times with linear backoff."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return operation()
            except RateLimitExceeded:
                raise
            except Exception as exc:
                last_error = exc
                if attempt < self._retry_attempts:
                    self._sleep(self._retry_delay * attempt)
        raise last_error

    @staticmethod
    def _probe(provider: QuoteProvider) -> bool:
        try:
            return bool(provider.is_available())
        except Exception as exc:
            logger.warning(f"MarketData: availability probe failed for {provider.name}: {exc}")
            return False
