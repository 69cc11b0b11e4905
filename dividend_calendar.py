"""
Ex-dividend calendar for income ETFs

Dates are configured explicitly or projected from Yahoo Finance dividend
history (last ex-date plus the median spacing between recent payments).
"""
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
import yfinance as yf

logger = logging.getLogger(__name__)


class DividendCalendar:
    """Upcoming ex-dividend dates and amounts per symbol"""

    def __init__(self, schedule: Optional[Dict[str, Iterable[Tuple[date, float]]]] = None):
        self._schedule: Dict[str, List[Tuple[date, float]]] = {}
        for symbol, entries in (schedule or {}).items():
            for ex_date, amount in entries:
                self.add(symbol, ex_date, amount)

    def add(self, symbol: str, ex_date, amount: float = 0.0) -> None:
        ex_date = pd.to_datetime(ex_date).date()
        entries = self._schedule.setdefault(symbol.upper(), [])
        entries.append((ex_date, float(amount)))
        entries.sort()

    def get_next_ex_dividend(self, symbol: str, as_of: Optional[date] = None) -> Optional[Tuple[date, float]]:
        """First (ex_date, amount) strictly after as_of, or None"""
        as_of = as_of or date.today()
        for ex_date, amount in self._schedule.get(symbol.upper(), []):
            if ex_date > as_of:
                return ex_date, amount
        return None

    def get_next_ex_dividend_date(self, symbol: str, as_of: Optional[date] = None) -> Optional[date]:
        upcoming = self.get_next_ex_dividend(symbol, as_of)
        return upcoming[0] if upcoming else None

    def days_to_ex_dividend(self, symbol: str, as_of: Optional[date] = None) -> Optional[int]:
        as_of = as_of or date.today()
        ex_date = self.get_next_ex_dividend_date(symbol, as_of)
        return (ex_date - as_of).days if ex_date else None

    def dividend_amount(self, symbol: str, as_of: Optional[date] = None) -> float:
        upcoming = self.get_next_ex_dividend(symbol, as_of)
        return upcoming[1] if upcoming else 0.0

    @staticmethod
    def project_next(dividends: pd.Series, as_of: Optional[date] = None) -> Optional[Tuple[date, float]]:
        """
        Project the next ex-dividend from a dividend history series

        Args:
            dividends: Amounts indexed by ex-date (yfinance Ticker.dividends)
            as_of: Projection date (defaults to today)

        Returns:
            (ex_date, amount) or None with fewer than two payments
        """
        if dividends is None or len(dividends) < 2:
            return None
        as_of = as_of or date.today()
        index = pd.to_datetime(dividends.index)
        if index.tz is not None:
            index = index.tz_localize(None)
        history = pd.Series(dividends.values, index=index).sort_index().tail(12)

        spacing_days = int(history.index.to_series().diff().dt.days.dropna().median())
        if spacing_days <= 0:
            return None
        next_date = history.index[-1].date()
        while next_date <= as_of:
            next_date += timedelta(days=spacing_days)
        return next_date, float(history.iloc[-1])

    @classmethod
    def from_yfinance(cls, symbols: Iterable[str], as_of: Optional[date] = None) -> "DividendCalendar":
        """Build a calendar from Yahoo Finance dividend history"""
        calendar = cls()
        for symbol in symbols:
            try:
                projected = cls.project_next(yf.Ticker(symbol).dividends, as_of)
            except Exception as e:
                logger.warning(f"Could not load dividends for {symbol}: {e}")
                continue
            if projected:
                calendar.add(symbol, projected[0], projected[1])
        return calendar
