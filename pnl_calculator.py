"""
P&L Calculator - real-time unrealized P&L for the open portfolio

PnLCalculator holds the per-position math. RealTimePnLService runs it on a
timer against the latest prices, skips positions whose price has not moved,
coalesces write-backs to portfolio state and notifies subscribers.
"""
import logging
import threading
import time
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from config import (
    BASE_UPDATE_INTERVAL_MS,
    HEARTBEAT_EVERY_N_TICKS,
    METRICS_SMOOTHING,
    PRICE_CHANGE_EPSILON,
    WRITE_DEBOUNCE_MS,
)
from market_data.cache import LRUCache
from market_data.models import PriceUpdate
from market_data.service import MarketDataService
from models import PerformanceSnapshot, PLUpdate, PortfolioPLSummary, Position
from portfolio_state import PortfolioState
from scheduling import RepeatingTimer
from subscriptions import SubscriptionManager
from write_buffer import PendingWrites

logger = logging.getLogger(__name__)


class PnLCalculator:
    """Position-level P&L math"""

    @staticmethod
    def calculate_position_pl(position: Position, price: float, timestamp: Optional[float] = None) -> PLUpdate:
        """
        Calculate unrealized P&L for one position at a given price

        Stocks use quantity as shares; options multiply both cost basis and
        current value by the contract multiplier. Short positions gain when
        the price falls.

        Args:
            position: Position to mark
            price: Current price per share / per contract
            timestamp: Epoch seconds for the result (defaults to now)

        Returns:
            PLUpdate with unrealized P&L and percent change rounded to 2 dp
        """
        size = position.size * position.multiplier
        cost_basis = position.purchase_price * size
        current_value = price * size

        if position.is_long:
            unrealized_pl = current_value - cost_basis
        else:
            unrealized_pl = cost_basis - current_value

        if position.purchase_price > 0:
            percent_change = (price - position.purchase_price) / position.purchase_price * 100
        else:
            percent_change = 0.0

        return PLUpdate(
            position_id=position.id,
            symbol=position.symbol,
            current_price=price,
            unrealized_pl=round(unrealized_pl, 2),
            percent_change=round(percent_change, 2),
            timestamp=time.time() if timestamp is None else timestamp,
            has_changed=True,
        )

    @staticmethod
    def market_value(position: Position, price: float) -> float:
        """Unsigned market value: price x |quantity| (x 100 for options)"""
        return position.market_value(price)

    @staticmethod
    def calculate_day_change(position: Position, price: float, reference_price: float) -> float:
        """Signed P&L move since the session reference price"""
        direction = 1 if position.is_long else -1
        return (price - reference_price) * position.size * position.multiplier * direction

    @staticmethod
    def price_moved(previous: float, current: float) -> bool:
        """True when the move is at least one cent"""
        return round(abs(current - previous), 6) >= PRICE_CHANGE_EPSILON


class RealTimePnLService:
    """
    Periodic portfolio P&L engine.

    Args:
        quote_source:  Gateway used for symbols missing from the price cache
        state:         Portfolio state the results are written back to
        price_cache:   Latest price per symbol, shared with the streaming feed
        subscriptions: Consumer fan-out, notified after each commit
        update_frequency_ms: Initial recompute interval
        write_delay_ms: Debounce window for write-backs
        timer_factory: threading.Timer compatible factory for the debounce
        queue_size_source: Reports the inbound queue depth for metrics
    """

    def __init__(
        self,
        quote_source: MarketDataService,
        state: PortfolioState,
        price_cache: Optional[LRUCache] = None,
        subscriptions: Optional[SubscriptionManager] = None,
        update_frequency_ms: int = BASE_UPDATE_INTERVAL_MS,
        write_delay_ms: float = WRITE_DEBOUNCE_MS,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        queue_size_source: Optional[Callable[[], int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.quote_source = quote_source
        self.state = state
        self.price_cache = price_cache if price_cache is not None else LRUCache()
        self.subscriptions = subscriptions or SubscriptionManager()
        self.update_frequency = update_frequency_ms
        self.adaptive_mode = True
        self._clock = clock
        self._queue_size_source = queue_size_source

        self._cache_lock = threading.Lock()
        self._last_pl: Dict[str, PLUpdate] = {}
        self._day_change: Dict[str, float] = {}
        self._reference_prices: Dict[str, float] = {}
        self._session_date: Optional[date] = None
        self._update_counter = 0
        self._latest_summary: Optional[PortfolioPLSummary] = None
        self._writes = PendingWrites(self._commit, write_delay_ms / 1000.0, timer_factory)
        self._timer: Optional[RepeatingTimer] = None

        self._cache_hits = 0
        self._cache_misses = 0
        self._total_updates = 0
        self._average_update_time = 0.0
        self._max_update_time = 0.0

    # ------------------------------------------------------------------
    # Price resolution
    # ------------------------------------------------------------------

    def _roll_session(self, now: float) -> None:
        """Drop day-change references when the calendar date changes"""
        session = date.fromtimestamp(now)
        if session == self._session_date:
            return
        if self._session_date is not None:
            self._reference_prices.clear()
            self._day_change.clear()
            self._last_pl.clear()
            logger.info(f"New trading session {session.isoformat()}, day change references reset")
        self._session_date = session

    def apply_price_updates(self, updates: Iterable[PriceUpdate]) -> None:
        """Feed streamed prices into the cache ahead of the next tick"""
        with self._cache_lock:
            self._roll_session(self._clock())
            for update in updates:
                self.price_cache.set(update.symbol, update.price)
                if update.change is not None and update.symbol not in self._reference_prices:
                    self._reference_prices[update.symbol] = update.price - update.change

    def _resolve_prices(self, symbols: List[str]) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        with self._cache_lock:
            for symbol in symbols:
                cached = self.price_cache.get(symbol)
                if cached is not None:
                    prices[symbol] = cached
                    self._cache_hits += 1
                else:
                    self._cache_misses += 1

        missing = [s for s in symbols if s not in prices]
        if not missing:
            return prices

        try:
            quotes = self.quote_source.get_multiple_quotes(missing)
        except Exception as e:
            logger.error(f"Failed to fetch quotes for {missing}: {e}")
            return prices

        with self._cache_lock:
            for symbol, quote in quotes.items():
                prices[symbol] = quote.price
                self.price_cache.set(symbol, quote.price)
                self._reference_prices.setdefault(symbol, quote.previous_close)
        return prices

    # ------------------------------------------------------------------
    # Portfolio P&L
    # ------------------------------------------------------------------

    def compute_portfolio_pl(
        self,
        positions: List[Position],
        cash_balance: float,
        realized_pl: float,
    ) -> PortfolioPLSummary:
        """
        Mark every position to the latest price and aggregate

        Positions whose price moved less than a cent since the last run reuse
        their cached result (has_changed=False). Positions without a price
        are skipped and logged.
        """
        now = self._clock()
        with self._cache_lock:
            self._roll_session(now)

        if not positions:
            self._update_counter += 1
            return PortfolioPLSummary(
                total_unrealized_pl=0.0,
                total_realized_pl=realized_pl,
                total_value=cash_balance,
                day_change=0.0,
                day_change_percent=0.0,
                positions=[],
                timestamp=now,
                update_count=self._update_counter,
            )

        symbols = list(dict.fromkeys(p.symbol for p in positions))
        prices = self._resolve_prices(symbols)

        updates: List[PLUpdate] = []
        total_unrealized = 0.0
        total_value = cash_balance
        day_change = 0.0

        for position in positions:
            price = prices.get(position.symbol)
            if price is None:
                logger.warning(f"No quote available for {position.symbol}, skipping {position.id}")
                continue

            last = self._last_pl.get(position.id)
            if last is not None and not PnLCalculator.price_moved(last.current_price, price):
                update = PLUpdate(
                    position_id=last.position_id,
                    symbol=last.symbol,
                    current_price=last.current_price,
                    unrealized_pl=last.unrealized_pl,
                    percent_change=last.percent_change,
                    timestamp=last.timestamp,
                    has_changed=False,
                )
            else:
                update = PnLCalculator.calculate_position_pl(position, price, now)
                self._last_pl[position.id] = update
                reference = self._reference_prices.setdefault(position.symbol, price)
                self._day_change[position.id] = PnLCalculator.calculate_day_change(position, price, reference)

            updates.append(update)
            total_unrealized += update.unrealized_pl
            total_value += PnLCalculator.market_value(position, price)
            day_change += self._day_change.get(position.id, 0.0)

        live_ids = {p.id for p in positions}
        for stale in [pid for pid in self._last_pl if pid not in live_ids]:
            self._last_pl.pop(stale, None)
            self._day_change.pop(stale, None)

        self._update_counter += 1
        return PortfolioPLSummary(
            total_unrealized_pl=round(total_unrealized, 2),
            total_realized_pl=realized_pl,
            total_value=total_value,
            day_change=round(day_change, 2),
            day_change_percent=(day_change / total_value * 100) if total_value > 0 else 0.0,
            positions=updates,
            timestamp=now,
            update_count=self._update_counter,
        )

    def update_portfolio_pl(self) -> Optional[PortfolioPLSummary]:
        """
        One engine tick: recompute, then stage changed positions for the
        debounced write-back. Ticks with no changes are dropped except every
        tenth, which commits as a heartbeat.
        """
        started = time.perf_counter()
        try:
            summary = self.compute_portfolio_pl(
                self.state.positions_snapshot(),
                self.state.cash_balance,
                self.state.realized_pl,
            )
        except Exception as e:
            logger.error(f"Failed to update portfolio P&L: {e}", exc_info=True)
            return None
        self._record_update_time((time.perf_counter() - started) * 1000)

        changed = summary.changed_positions
        if not changed and summary.update_count % HEARTBEAT_EVERY_N_TICKS != 0:
            return summary

        self._latest_summary = summary
        self._writes.stage(changed)
        self._writes.schedule()
        return summary

    def flush(self) -> int:
        """Commit staged writes now instead of waiting for the debounce"""
        return self._writes.flush()

    def _commit(self, writes: List[PLUpdate]) -> None:
        if writes:
            self.state.apply_pl_updates(writes)
        summary = self._latest_summary
        if summary is None:
            return
        self.state.update_portfolio_pl(summary.total_unrealized_pl, summary.total_value)
        self.subscriptions.publish(summary)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_position_pl(self, position_id: str) -> Optional[PLUpdate]:
        return self._last_pl.get(position_id)

    def max_abs_percent_change(self) -> float:
        """Largest |percent change| across cached position results"""
        return max((abs(u.percent_change) for u in self._last_pl.values()), default=0.0)

    @property
    def update_count(self) -> int:
        return self._update_counter

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def _record_update_time(self, elapsed_ms: float) -> None:
        self._total_updates += 1
        self._max_update_time = max(self._max_update_time, elapsed_ms)
        self._average_update_time = (
            (1 - METRICS_SMOOTHING) * self._average_update_time + METRICS_SMOOTHING * elapsed_ms
        )

    def get_performance_metrics(self) -> PerformanceSnapshot:
        lookups = self._cache_hits + self._cache_misses
        if self._queue_size_source is not None:
            queue_size = self._queue_size_source()
        else:
            queue_size = self._writes.pending_count
        return PerformanceSnapshot(
            average_update_time=self._average_update_time,
            max_update_time=self._max_update_time,
            total_updates=self._total_updates,
            cache_hit_rate=self._cache_hits / lookups if lookups else 0.0,
            queue_size=queue_size,
            subscriber_count=self.subscriptions.subscriber_count,
            is_running=self.is_running,
            update_frequency=self.update_frequency,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def subscribe(self, callback, symbols=None, min_change_threshold=None):
        return self.subscriptions.subscribe(callback, symbols, min_change_threshold)

    def clear_caches(self) -> None:
        with self._cache_lock:
            self.price_cache.clear()
            self._reference_prices.clear()
        self._last_pl.clear()
        self._day_change.clear()
        self._writes.cancel()
        logger.info("Cleared all P&L caches")

    def set_update_frequency(self, frequency_ms: int) -> None:
        if frequency_ms == self.update_frequency:
            return
        self.update_frequency = frequency_ms
        if self._timer is not None:
            self._timer.interval = frequency_ms / 1000.0
        logger.info(f"P&L update frequency set to {frequency_ms}ms")

    def set_adaptive_mode(self, enabled: bool) -> None:
        self.adaptive_mode = enabled
        logger.info(f"Adaptive mode {'enabled' if enabled else 'disabled'}")

    def start(self) -> None:
        if self.is_running:
            return
        self.update_portfolio_pl()
        self._timer = RepeatingTimer(self.update_frequency / 1000.0, self.update_portfolio_pl, "pnl-engine")
        self._timer.start()
        logger.info(f"P&L engine started ({self.update_frequency}ms)")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
        if self._writes.is_scheduled:
            self._writes.flush()
        logger.info("P&L engine stopped")
