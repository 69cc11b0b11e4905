"""
Mock provider: synthetic quotes and option chains for development, the
performance report and as the always-available last fallback.
Seedable so a run can be reproduced.
"""
import logging
import random
from datetime import date, datetime
from typing import Dict, List, Optional

import pandas as pd

from ..models import OptionChain, OptionQuote, Quote
from .base import QuoteProvider

logger = logging.getLogger(__name__)

BASE_PRICES: Dict[str, float] = {
    "AAPL": 150.0,
    "MSFT": 300.0,
    "GOOGL": 2500.0,
    "TSLA": 200.0,
    "SPY": 400.0,
    "QQQ": 350.0,
    "MSTY": 45.0,
    "PLTY": 28.0,
    "TSLY": 35.0,
}
DEFAULT_BASE_PRICE = 100.0


class MockProvider(QuoteProvider):
    """
    Quotes vary up to ±max_variation around a per-symbol base price.
    Option chains span the next three monthly expiries (third Friday).
    """

    name = "mock"

    def __init__(
        self,
        seed: Optional[int] = None,
        max_variation: float = 0.05,
        base_prices: Optional[Dict[str, float]] = None,
    ):
        self._rng = random.Random(seed)
        self._max_variation = max_variation
        self._base_prices = dict(BASE_PRICES)
        if base_prices:
            self._base_prices.update(base_prices)

    def is_available(self) -> bool:
        return True

    def base_price(self, symbol: str) -> float:
        return self._base_prices.get(symbol, DEFAULT_BASE_PRICE)

    def get_quote(self, symbol: str) -> Quote:
        base = self.base_price(symbol)
        variation = (self._rng.random() - 0.5) * 2 * self._max_variation
        price = base * (1 + variation)
        change = price - base

        return Quote(
            symbol=symbol,
            price=round(price, 2),
            change=round(change, 2),
            change_percent=round(change / base * 100, 2),
            volume=self._rng.randint(0, 1_000_000),
            timestamp=datetime.now(),
            source=self.name,
        )

    def get_option_chain(self, symbol: str, as_of: Optional[date] = None) -> OptionChain:
        underlying = self.base_price(symbol)
        start = pd.Timestamp(as_of or date.today())
        expiries = [ts.date() for ts in pd.date_range(start, periods=3, freq="WOM-3FRI")]
        strikes = _strike_ladder(underlying)

        calls: List[OptionQuote] = []
        puts: List[OptionQuote] = []
        for expiry in expiries:
            for strike in strikes:
                calls.append(self._synthetic_row(strike, expiry, max(0.0, underlying - strike)))
                puts.append(self._synthetic_row(strike, expiry, max(0.0, strike - underlying)))

        return OptionChain(
            symbol=symbol,
            underlying_price=underlying,
            calls=calls,
            puts=puts,
            timestamp=datetime.now(),
            source=self.name,
        )

    def _synthetic_row(self, strike: float, expiry: date, intrinsic: float) -> OptionQuote:
        extrinsic = self._rng.random() * max(strike * 0.05, 0.05)
        bid = round(intrinsic + extrinsic, 2)
        return OptionQuote(
            strike=strike,
            expiry=expiry,
            bid=bid,
            ask=round(bid + 0.05 + self._rng.random() * 0.25, 2),
            last_price=round(bid + 0.02, 2),
            volume=self._rng.randint(0, 1000),
            open_interest=self._rng.randint(0, 5000),
            implied_volatility=round(0.2 + self._rng.random() * 0.3, 4),
        )


def _strike_ladder(underlying: float, steps: int = 3) -> List[float]:
    """Seven strikes centred on the underlying, ~5% apart."""
    increment = max(round(underlying * 0.05), 1)
    centre = round(underlying / increment) * increment
    return [float(centre + i * increment) for i in range(-steps, steps + 1) if centre + i * increment > 0]
