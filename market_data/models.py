"""
Data models for the Market Data Service.
Pure Python dataclasses with no UI dependencies.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional


@dataclass
class Quote:
    """Current quote snapshot, tagged with the provider that produced it."""
    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int
    timestamp: datetime
    source: str

    @property
    def previous_close(self) -> float:
        return self.price - self.change


@dataclass
class OptionQuote:
    """
    One row of an option chain.
    Greeks are Optional; most free providers do not publish them.
    """
    strike: float
    expiry: date
    bid: float
    ask: float
    last_price: float
    volume: int
    open_interest: int
    implied_volatility: float
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None

    @property
    def mid(self) -> float:
        if self.bid and self.ask:
            return (self.bid + self.ask) / 2
        return self.last_price


@dataclass
class OptionChain:
    """Calls and puts for an underlying, across one or more expiries."""
    symbol: str
    underlying_price: float
    calls: List[OptionQuote]
    puts: List[OptionQuote]
    timestamp: datetime
    source: str = ""

    def expiries(self) -> List[date]:
        return sorted({o.expiry for o in self.calls + self.puts})

    def find(self, option_type: str, strike: float, expiry: date) -> Optional[OptionQuote]:
        rows = self.calls if option_type == "call" else self.puts
        for row in rows:
            if row.strike == strike and row.expiry == expiry:
                return row
        return None


@dataclass
class PriceUpdate:
    """
    Streaming analog of Quote. Timestamps are epoch seconds.
    volume / change / change_percent are only present on full price_update frames.
    """
    symbol: str
    price: float
    timestamp: float
    volume: Optional[int] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None


@dataclass
class BatchedUpdate:
    """All price updates parsed in one drain cycle of the streaming feed."""
    updates: List[PriceUpdate]
    timestamp: float
    batch_id: str
    symbols: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.symbols:
            self.symbols = sorted({u.symbol for u in self.updates})

    def latest_by_symbol(self) -> dict:
        """Collapse the batch to the last update per symbol (arrival order wins)."""
        latest = {}
        for update in self.updates:
            latest[update.symbol] = update
        return latest
