"""Pytest fixtures: fake providers, clocks and timers for deterministic tests."""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest

from market_data.errors import ProviderError
from market_data.models import Quote
from market_data.providers import QuoteProvider
from market_data.service import MarketDataService
from models import Position
from portfolio_state import PortfolioState


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    created: List["FakeTimer"] = []

    def __init__(self, interval: float, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class StaticProvider(QuoteProvider):
    """Returns fixed prices; optionally fails a set number of times first."""

    def __init__(
        self,
        prices: Dict[str, float],
        name: str = "static",
        available: bool = True,
        failures: int = 0,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.prices = dict(prices)
        self.available = available
        self.failures = failures
        self.error = error
        self.calls: List[str] = []

    def is_available(self) -> bool:
        return self.available

    def get_quote(self, symbol: str) -> Quote:
        self.calls.append(symbol)
        if self.failures > 0:
            self.failures -= 1
            raise self.error or ProviderError(self.name, "temporary failure")
        if symbol not in self.prices:
            raise ProviderError(self.name, f"unknown symbol {symbol}")
        price = self.prices[symbol]
        return Quote(
            symbol=symbol,
            price=price,
            change=0.0,
            change_percent=0.0,
            volume=1000,
            timestamp=datetime(2024, 1, 2, 10, 0),
            source=self.name,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_timer():
    FakeTimer.created = []
    return FakeTimer


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_service(sleeps):
    """Factory for a gateway over the given providers with recorded sleeps."""

    def _make(*providers: QuoteProvider, **kwargs) -> MarketDataService:
        kwargs.setdefault("retry_delay", 0.5)
        return MarketDataService(providers=list(providers), sleep=sleeps.append, **kwargs)

    return _make


@pytest.fixture
def long_stock() -> Position:
    return Position(
        id="MSTY-1", symbol="MSTY", type="stock", position_type="long",
        quantity=100, purchase_price=45.0,
    )


@pytest.fixture
def short_stock() -> Position:
    return Position(
        id="MSTY-2", symbol="MSTY", type="stock", position_type="short",
        quantity=100, purchase_price=45.0,
    )


@pytest.fixture
def expiry() -> date:
    return date(2024, 3, 15)


@pytest.fixture
def long_call(expiry: date) -> Position:
    return Position(
        id="TSLY-C", symbol="TSLY", type="call", position_type="long",
        quantity=1, purchase_price=2.0, strike=35.0, expiry=expiry,
    )


@pytest.fixture
def state(long_stock: Position) -> PortfolioState:
    return PortfolioState(cash_balance=10_000.0, positions=[long_stock])


@pytest.fixture
def as_of(expiry: date) -> date:
    return expiry - timedelta(days=30)
