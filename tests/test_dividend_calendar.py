"""Tests for the ex-dividend calendar. yfinance is patched; no network calls."""

from datetime import date
from unittest.mock import MagicMock, patch

import pandas as pd

from dividend_calendar import DividendCalendar


def _history(dates, amounts, tz=None) -> pd.Series:
    index = pd.DatetimeIndex(pd.to_datetime(dates))
    if tz:
        index = index.tz_localize(tz)
    return pd.Series(amounts, index=index)


def test_next_ex_dividend_is_strictly_after_as_of() -> None:
    calendar = DividendCalendar({"msty": [("2024-02-10", 1.5), ("2024-03-10", 1.6)]})

    assert calendar.get_next_ex_dividend("MSTY", date(2024, 2, 10)) == (date(2024, 3, 10), 1.6)
    assert calendar.days_to_ex_dividend("MSTY", date(2024, 2, 1)) == 9
    assert calendar.dividend_amount("MSTY", date(2024, 2, 1)) == 1.5


def test_unknown_symbol_has_no_dividend() -> None:
    calendar = DividendCalendar()
    assert calendar.get_next_ex_dividend_date("SPY", date(2024, 1, 1)) is None
    assert calendar.days_to_ex_dividend("SPY", date(2024, 1, 1)) is None
    assert calendar.dividend_amount("SPY") == 0.0


def test_project_next_uses_median_spacing() -> None:
    history = _history(["2024-01-05", "2024-02-05", "2024-03-06"], [1.0, 1.1, 1.2], tz="America/New_York")
    assert DividendCalendar.project_next(history, date(2024, 3, 10)) == (date(2024, 4, 5), 1.2)


def test_project_next_needs_two_payments() -> None:
    assert DividendCalendar.project_next(_history(["2024-01-05"], [1.0]), date(2024, 3, 10)) is None


def test_from_yfinance_skips_failures() -> None:
    good = MagicMock()
    good.dividends = _history(["2024-01-05", "2024-02-05"], [0.9, 1.0])

    def ticker(symbol):
        if symbol == "BAD":
            raise RuntimeError("no data")
        return good

    with patch("dividend_calendar.yf.Ticker", side_effect=ticker):
        calendar = DividendCalendar.from_yfinance(["TSLY", "BAD"], as_of=date(2024, 2, 10))

    assert calendar.get_next_ex_dividend("TSLY", date(2024, 2, 10)) == (date(2024, 3, 7), 1.0)
    assert calendar.get_next_ex_dividend("BAD", date(2024, 2, 10)) is None
