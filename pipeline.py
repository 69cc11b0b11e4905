"""
Composition root for the real-time pricing pipeline.

Builds one of each service with explicit injection and wires them:
    feed batches -> P&L engine price cache
    engine ticks -> debounced write-back -> subscribers
    monitor tick -> adaptive controller -> feed throttle / engine interval
"""
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional

from adaptive_controller import AdaptiveController, ControllerDecision, ControllerInput
from config import DEFAULT_CASH_BALANCE, MONITOR_INTERVAL_MS, PRICE_CACHE_CAPACITY
from market_data.cache import LRUCache
from market_data.models import BatchedUpdate
from market_data.providers import QuoteProvider
from market_data.service import MarketDataService
from models import PerformanceSnapshot, Position, StrategyConfig
from pnl_calculator import RealTimePnLService
from portfolio_state import PortfolioState
from price_feed import FeedConfig, StreamingPriceFeed
from risk_monitor import PortfolioRisk, RiskMonitor
from scheduling import RepeatingTimer
from subscriptions import SubscriptionManager
from trade_service import TradeService

logger = logging.getLogger(__name__)


class RealTimePipeline:
    """Owns the pipeline services and their timers for one process."""

    def __init__(
        self,
        quote_source: MarketDataService,
        state: PortfolioState,
        feed: StreamingPriceFeed,
        engine: RealTimePnLService,
        controller: Optional[AdaptiveController] = None,
        risk_monitor: Optional[RiskMonitor] = None,
        trade_service: Optional[TradeService] = None,
        monitor_interval_ms: int = MONITOR_INTERVAL_MS,
    ):
        self.quote_source = quote_source
        self.state = state
        self.feed = feed
        self.engine = engine
        self.controller = controller or AdaptiveController(
            base_update_interval_ms=engine.update_frequency,
            throttle_ms=feed.current_throttle_ms,
        )
        self.risk_monitor = risk_monitor or RiskMonitor()
        self.trade_service = trade_service or TradeService(
            state, quote_source, dividend_calendar=self.risk_monitor.dividend_calendar
        )
        self.monitor_interval_ms = monitor_interval_ms
        self._monitor: Optional[RepeatingTimer] = None
        self._unsubscribe_feed = feed.batched_updates.subscribe(self.on_batch)

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self.engine.subscriptions

    def on_batch(self, batch: BatchedUpdate) -> None:
        """Apply one drained feed batch to the engine's price cache"""
        self.engine.apply_price_updates(batch.updates)

    def tick_monitor(self) -> ControllerDecision:
        """One monitoring tick: observe, decide, apply both knobs"""
        self.controller.adapt_interval = self.engine.adaptive_mode
        decision = self.controller.tick(ControllerInput(
            message_rate=self.feed.message_rate(),
            max_abs_percent_change=self.engine.max_abs_percent_change(),
        ))
        if decision.throttle_changed:
            self.feed.set_throttle_ms(decision.throttle_ms)
        if decision.interval_changed:
            self.engine.set_update_frequency(decision.update_interval_ms)
        self.feed.publish_metrics()
        return decision

    def metrics(self) -> PerformanceSnapshot:
        return self.engine.get_performance_metrics()

    def risk_snapshot(self) -> PortfolioRisk:
        positions = self.state.positions_snapshot()
        prices = {}
        for position in positions:
            price = self.engine.price_cache.peek(position.symbol)
            if price is not None:
                prices[position.symbol] = price
        return self.risk_monitor.calculate_portfolio_risk(positions, prices, self.state.cash_balance)

    @property
    def is_running(self) -> bool:
        return self._monitor is not None and self._monitor.is_running

    def start(self, connect: bool = True) -> None:
        if self.is_running:
            return
        self.engine.start()
        self.feed.start()
        if connect:
            self.feed.connect()
        self._monitor = RepeatingTimer(self.monitor_interval_ms / 1000.0, self.tick_monitor, "pipeline-monitor")
        self._monitor.start()
        logger.info("Real-time pipeline started")

    def stop(self) -> None:
        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None
        self.feed.destroy()
        self.engine.stop()
        logger.info("Real-time pipeline stopped")


def build_pipeline(
    providers: Optional[List[QuoteProvider]] = None,
    positions: Optional[Iterable[Position]] = None,
    cash_balance: float = DEFAULT_CASH_BALANCE,
    feed_config: Optional[FeedConfig] = None,
    **engine_options,
) -> RealTimePipeline:
    """
    Build a pipeline from config defaults

    Args:
        providers: Quote providers in fallback order (config order if None)
        positions: Initial open positions
        cash_balance: Starting cash
        feed_config: Streaming feed settings
        engine_options: Extra keyword arguments for RealTimePnLService
    """
    quote_source = MarketDataService(providers=providers)
    state = PortfolioState(cash_balance=cash_balance, positions=positions)
    feed = StreamingPriceFeed(config=feed_config)
    engine = RealTimePnLService(
        quote_source=quote_source,
        state=state,
        price_cache=LRUCache(PRICE_CACHE_CAPACITY),
        subscriptions=SubscriptionManager(),
        queue_size_source=lambda: feed.queue_size,
        **engine_options,
    )
    return RealTimePipeline(quote_source=quote_source, state=state, feed=feed, engine=engine)


def sample_positions() -> List[Position]:
    """Income ETF share book used by the performance report and the monitor"""
    return [
        Position(id="MSTY-STK", symbol="MSTY", type="stock", position_type="long",
                 quantity=100, purchase_price=45.0, strategy_id="MSTY-covered-call"),
        Position(id="PLTY-STK", symbol="PLTY", type="stock", position_type="long",
                 quantity=200, purchase_price=27.5),
        Position(id="TSLY-STK", symbol="TSLY", type="stock", position_type="long",
                 quantity=100, purchase_price=35.0, strategy_id="TSLY-collar"),
        Position(id="TSLA-SHORT", symbol="TSLA", type="stock", position_type="short",
                 quantity=10, purchase_price=205.0, stop_loss=220.0),
    ]


def sample_strategies(as_of: Optional[date] = None) -> List[StrategyConfig]:
    """One strategy per recognized income ETF, expiring in 30 days"""
    expiry = (as_of or date.today()) + timedelta(days=30)
    return [
        StrategyConfig(symbol="MSTY", type="covered-call", quantity=1, strike=50.0,
                       expiry=expiry, premium=1.20),
        StrategyConfig(symbol="PLTY", type="cash-secured-put", quantity=1, strike=26.0,
                       expiry=expiry, premium=0.85),
        StrategyConfig(symbol="TSLY", type="collar", quantity=1, strike=38.0,
                       expiry=expiry, put_strike=32.0, premium=0.90, put_premium=0.60),
    ]
