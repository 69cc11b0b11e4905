"""
Minimal application-state contract shared with the pricing pipeline.

Structural fields (id, symbol, strike, expiry, quantity, ...) belong to the
application. The pipeline writes price and P&L fields only, through
apply_pl_updates(), committed by the P&L engine write buffer.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from config import DEFAULT_CASH_BALANCE
from models import PLUpdate, Position

logger = logging.getLogger(__name__)


class PortfolioState:
    """In-memory portfolio: positions, cash and realized / unrealized P&L."""

    def __init__(
        self,
        cash_balance: float = DEFAULT_CASH_BALANCE,
        realized_pl: float = 0.0,
        positions: Optional[Iterable[Position]] = None,
    ):
        self._lock = threading.RLock()
        self._positions: Dict[str, Position] = {}
        self.cash_balance = cash_balance
        self.realized_pl = realized_pl
        self.unrealized_pl = 0.0
        self.total_value = cash_balance
        self.margin_usage = 0.0
        for position in positions or []:
            self.add_position(position)

    # ------------------------------------------------------------------
    # Structural changes (application side)
    # ------------------------------------------------------------------

    def add_position(self, position: Position) -> None:
        with self._lock:
            if position.id in self._positions:
                raise ValueError(f"Position {position.id} already exists")
            self._positions[position.id] = replace(position)

    def remove_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            return self._positions.pop(position_id, None)

    def close_position(self, position_id: str, close_price: float) -> float:
        """Close at close_price, book realized P&L into cash. Returns the profit."""
        with self._lock:
            position = self._positions.pop(position_id, None)
            if position is None:
                raise KeyError(position_id)
            direction = 1 if position.is_long else -1
            profit = (close_price - position.purchase_price) * position.size * position.multiplier * direction
            self.realized_pl += profit
            self.cash_balance += profit
            return profit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(position_id)
            return replace(position) if position else None

    def positions_snapshot(self) -> List[Position]:
        """Copies of every position; callers never hold live references."""
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    @property
    def position_count(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Pipeline writes (price / P&L fields only)
    # ------------------------------------------------------------------

    def apply_pl_updates(self, updates: Iterable[PLUpdate]) -> int:
        """Write current price and unrealized P&L back to positions."""
        applied = 0
        now = datetime.now()
        with self._lock:
            for update in updates:
                position = self._positions.get(update.position_id)
                if position is None:
                    logger.debug(f"P&L update for unknown position {update.position_id} ignored")
                    continue
                position.current_price = update.current_price
                position.unrealized_pl = update.unrealized_pl
                position.last_updated = now
                applied += 1
        return applied

    def update_portfolio_pl(self, unrealized_pl: float, total_value: float) -> None:
        with self._lock:
            self.unrealized_pl = unrealized_pl
            self.total_value = total_value
