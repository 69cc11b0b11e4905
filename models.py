"""
Data models and validation for positions, option legs and P&L results
"""
import itertools
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Dict, List, Literal, Optional

import pandas as pd

from config import CONTRACT_MULTIPLIER

InstrumentType = Literal["stock", "call", "put"]
PositionSide = Literal["long", "short"]
OptionType = Literal["call", "put"]
LegAction = Literal["buy", "sell"]
StrategyType = Literal["covered-call", "cash-secured-put", "collar", "custom"]

STRATEGY_TYPES = ("covered-call", "cash-secured-put", "collar", "custom")


def _as_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.to_datetime(value).date()


@dataclass
class Position:
    """
    An open position owned by portfolio state.
    quantity is a magnitude; direction comes from position_type.
    The pipeline only ever writes current_price, unrealized_pl and last_updated.
    """
    id: str
    symbol: str
    type: InstrumentType
    position_type: PositionSide
    quantity: float
    purchase_price: float
    current_price: float = 0.0
    unrealized_pl: float = 0.0
    strike: Optional[float] = None
    expiry: Optional[date] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    last_updated: Optional[datetime] = None
    strategy_id: Optional[str] = None

    def __post_init__(self):
        self.expiry = _as_date(self.expiry)
        if self.is_option and (self.strike is None or self.expiry is None):
            raise ValueError(f"Option position {self.id} requires strike and expiry")

    @property
    def is_option(self) -> bool:
        return self.type in ("call", "put")

    @property
    def is_long(self) -> bool:
        return self.position_type == "long"

    @property
    def multiplier(self) -> int:
        return CONTRACT_MULTIPLIER if self.is_option else 1

    @property
    def size(self) -> float:
        return abs(self.quantity)

    def market_value(self, price: Optional[float] = None) -> float:
        mark = self.current_price if price is None else price
        return mark * self.size * self.multiplier


@dataclass(frozen=True)
class OptionLeg:
    """One leg of a proposed trade or strategy. Immutable once built."""
    symbol: str
    option_type: OptionType
    action: LegAction
    quantity: float
    strike: Optional[float]
    expiry: Optional[date]
    premium: float = 0.0
    id: str = ""

    @property
    def is_short(self) -> bool:
        return self.action == "sell"

    @property
    def notional(self) -> float:
        """Strike exposure of the leg in dollars."""
        return (self.strike or 0.0) * self.quantity * CONTRACT_MULTIPLIER


@dataclass
class StrategyConfig:
    """Parameters for an income ETF strategy (covered call, CSP, collar)."""
    symbol: str
    type: StrategyType
    quantity: float
    strike: Optional[float]
    expiry: Optional[date]
    put_strike: Optional[float] = None
    premium: float = 0.0
    put_premium: float = 0.0
    name: Optional[str] = None
    legs: List[OptionLeg] = field(default_factory=list)

    def __post_init__(self):
        self.expiry = _as_date(self.expiry)


@dataclass
class PLUpdate:
    """Computed P&L for one position in one cycle."""
    position_id: str
    symbol: str
    current_price: float
    unrealized_pl: float
    percent_change: float
    timestamp: float
    has_changed: bool = True


@dataclass
class PortfolioPLSummary:
    """Portfolio aggregate for one P&L cycle."""
    total_unrealized_pl: float
    total_realized_pl: float
    total_value: float
    day_change: float
    day_change_percent: float
    positions: List[PLUpdate]
    timestamp: float
    update_count: int

    @property
    def changed_positions(self) -> List[PLUpdate]:
        return [p for p in self.positions if p.has_changed]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per position, for tables and reports."""
        columns = [
            "position_id", "symbol", "current_price", "unrealized_pl",
            "percent_change", "timestamp", "has_changed",
        ]
        return pd.DataFrame([asdict(p) for p in self.positions], columns=columns)


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Read-only metrics export consumed by the performance report."""
    average_update_time: float
    max_update_time: float
    total_updates: int
    cache_hit_rate: float
    queue_size: int
    subscriber_count: int
    is_running: bool
    update_frequency: int

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


class TradeValidator:
    """Validates option legs and strategy parameters before any margin math"""

    @staticmethod
    def validate_leg(leg: OptionLeg) -> List[str]:
        """Return every violation found on a single leg (empty if valid)."""
        errors = []
        label = leg.id or f"{leg.symbol} {leg.option_type}"

        if not leg.symbol or not str(leg.symbol).strip():
            errors.append(f"{label}: symbol is required")
        if leg.option_type not in ("call", "put"):
            errors.append(f"{label}: option type must be call or put (got {leg.option_type!r})")
        if leg.action not in ("buy", "sell"):
            errors.append(f"{label}: action must be buy or sell (got {leg.action!r})")
        if leg.quantity is None or leg.quantity <= 0:
            errors.append(f"{label}: quantity must be positive")
        if leg.strike is None:
            errors.append(f"{label}: strike is required")
        elif leg.strike <= 0:
            errors.append(f"{label}: strike must be positive")
        if leg.expiry is None:
            errors.append(f"{label}: expiry is required")
        if leg.premium is not None and leg.premium < 0:
            errors.append(f"{label}: premium cannot be negative")
        return errors

    @staticmethod
    def validate_legs(legs: List[OptionLeg]) -> List[str]:
        if not legs:
            return ["at least one leg is required"]
        errors = []
        for leg in legs:
            errors.extend(TradeValidator.validate_leg(leg))
        return errors

    @staticmethod
    def validate_strategy(config: StrategyConfig) -> List[str]:
        """Validate ETF strategy parameters (empty list if valid)."""
        errors = []

        if not config.symbol or not config.symbol.strip():
            errors.append("ETF symbol is required")
        if config.type not in STRATEGY_TYPES:
            errors.append(f"Unsupported strategy type: {config.type}")
        if not config.quantity or config.quantity <= 0:
            errors.append("Quantity must be positive")
        if not config.strike or config.strike <= 0:
            errors.append("Strike price must be positive")
        if config.expiry is None:
            errors.append("Invalid expiry date")
        if config.type == "collar":
            if not config.put_strike or config.put_strike <= 0:
                errors.append("Put strike must be specified for collar strategy")
            elif config.strike and config.put_strike >= config.strike:
                errors.append("Put strike must be below the call strike for collar strategy")
        if config.type == "custom":
            errors.extend(TradeValidator.validate_legs(config.legs))

        return errors


_position_ids = itertools.count(1)


def generate_position_id(prefix: str = "P") -> str:
    """Generate next position ID in sequence (P-1, P-2, ...)"""
    return f"{prefix}-{next(_position_ids)}"
