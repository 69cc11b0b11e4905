"""
yfinance provider: equity quotes and options chain data.
Source: Yahoo Finance (15-min delayed, free, no auth required).
"""
import logging
from datetime import datetime
from typing import List

import pandas as pd
import yfinance as yf

from ..errors import ProviderError
from ..models import OptionChain, OptionQuote, Quote
from .base import QuoteProvider

logger = logging.getLogger(__name__)


class YFinanceProvider(QuoteProvider):
    """
    Fetches equity quotes and options chain data from Yahoo Finance.
    No authentication required. Data is 10-15 minutes delayed.
    """

    name = "yfinance"

    def __init__(self, max_expiries: int = 3):
        self._max_expiries = max_expiries

    def is_available(self) -> bool:
        # Yahoo Finance needs no connection or keys
        return True

    def get_quote(self, symbol: str) -> Quote:
        # Normalise composite tickers (e.g. CRCL/ETHA/SOL → CRCL)
        yahoo_symbol = symbol.split("/")[0] if "/" in symbol else symbol

        try:
            t = yf.Ticker(yahoo_symbol)
            info = t.info or {}

            price = (
                info.get("currentPrice")
                or info.get("regularMarketPrice")
                or info.get("previousClose")
            )

            if price is None:
                hist = t.history(period="1d", interval="1m")
                price = float(hist["Close"].iloc[-1]) if not hist.empty else None
        except Exception as exc:
            raise ProviderError(self.name, f"failed to get price for {symbol}: {exc}") from exc

        if price is None:
            raise ProviderError(self.name, f"no price available for {symbol}")

        price = float(price)
        prev_close = float(info.get("previousClose") or price)
        change = price - prev_close

        return Quote(
            symbol=symbol,
            price=price,
            change=round(change, 4),
            change_percent=round(change / prev_close * 100, 4) if prev_close else 0.0,
            volume=int(info.get("volume") or info.get("regularMarketVolume") or 0),
            timestamp=datetime.now(),
            source=self.name,
        )

    def get_option_chain(self, symbol: str) -> OptionChain:
        """
        Fetch calls and puts for the nearest expiries.
        Fetches one chain per expiry to minimise API calls.
        """
        try:
            t = yf.Ticker(symbol)
            expiries = list(t.options)[: self._max_expiries]
        except Exception as exc:
            raise ProviderError(self.name, f"failed to list expiries for {symbol}: {exc}") from exc

        if not expiries:
            raise ProviderError(self.name, f"no listed options for {symbol}")

        calls: List[OptionQuote] = []
        puts: List[OptionQuote] = []
        for expiry in expiries:
            try:
                chain = t.option_chain(expiry)
            except Exception as exc:
                logger.warning(f"yfinance: failed to get options chain for {symbol}/{expiry}: {exc}")
                continue
            expiry_date = pd.to_datetime(expiry).date()
            calls.extend(_rows_to_quotes(chain.calls, expiry_date))
            puts.extend(_rows_to_quotes(chain.puts, expiry_date))

        if not calls and not puts:
            raise ProviderError(self.name, f"empty option chain for {symbol}")

        return OptionChain(
            symbol=symbol,
            underlying_price=self.get_quote(symbol).price,
            calls=calls,
            puts=puts,
            timestamp=datetime.now(),
            source=self.name,
        )


def _rows_to_quotes(df: pd.DataFrame, expiry_date) -> List[OptionQuote]:
    quotes = []
    for _, row in df.iterrows():
        quotes.append(
            OptionQuote(
                strike=float(row.get("strike", 0)),
                expiry=expiry_date,
                bid=float(row.get("bid") or 0),
                ask=float(row.get("ask") or 0),
                last_price=float(row.get("lastPrice") or 0),
                volume=int(0 if pd.isna(row.get("volume")) else row.get("volume")),
                open_interest=int(0 if pd.isna(row.get("openInterest")) else row.get("openInterest")),
                implied_volatility=float(row.get("impliedVolatility") or 0),
            )
        )
    return quotes
