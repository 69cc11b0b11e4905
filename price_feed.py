"""
Streaming price feed over websockets.

One logical connection per URL, each serviced by a daemon thread that
reconnects with exponential backoff and jitter. Inbound frames are
throttled and de-duplicated per connection, queued in a bounded deque and
drained in batches by a periodic processor.
"""
import json
import logging
import random
import threading
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Deque, Dict, List, Optional

import websocket

from batch_processor import BatchProcessor, BatchProcessorSelector, PooledBatchProcessor, epoch_seconds
from config import (
    BATCH_SIZE,
    HEARTBEAT_INTERVAL_MS,
    INITIAL_RECONNECT_DELAY_MS,
    LATENCY_BUFFER_SIZE,
    MAX_RECONNECT_ATTEMPTS,
    MAX_RECONNECT_DELAY_MS,
    MESSAGE_QUEUE_LIMIT,
    RECONNECT_JITTER_MS,
    STREAM_URL,
    THROTTLE_MS,
)
from events import EventChannel, StateChannel
from market_data.models import BatchedUpdate, PriceUpdate
from scheduling import RepeatingTimer

logger = logging.getLogger(__name__)


@dataclass
class FeedConfig:
    url: str = STREAM_URL
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    initial_reconnect_delay_ms: float = INITIAL_RECONNECT_DELAY_MS
    max_reconnect_delay_ms: float = MAX_RECONNECT_DELAY_MS
    reconnect_jitter_ms: float = RECONNECT_JITTER_MS
    heartbeat_interval_ms: float = HEARTBEAT_INTERVAL_MS
    message_queue_limit: int = MESSAGE_QUEUE_LIMIT
    batch_size: int = BATCH_SIZE
    throttle_ms: float = THROTTLE_MS  # batch drain interval


@dataclass
class FeedMetrics:
    messages_received: int = 0
    messages_processed: int = 0
    messages_dropped: int = 0
    parse_failures: int = 0
    average_latency_ms: float = 0.0
    connection_uptime: float = 0.0
    reconnect_count: int = 0
    queue_size: int = 0
    batches_processed: int = 0
    last_message_time: float = 0.0


@dataclass
class _Connection:
    url: str
    stop: threading.Event = field(default_factory=threading.Event)
    socket: Optional[object] = None
    thread: Optional[threading.Thread] = None
    attempts: int = 0
    is_open: bool = False
    last_accepted_at: Optional[float] = None
    last_message: Optional[dict] = None


class StreamingPriceFeed:
    """
    Websocket price transport.

    Args:
        config:             FeedConfig; defaults come from config.py.
        processor:          BatchProcessor used by process_batch(). Defaults to
                            inline parsing with a worker for large batches.
        connection_factory: Callable(url, timeout=...) returning an object with
                            send(), recv(), ping() and close(). Defaults to
                            websocket.create_connection.
        clock:              time source in epoch seconds.
        rng:                random() source for reconnect jitter.
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        processor: Optional[BatchProcessor] = None,
        connection_factory: Callable = websocket.create_connection,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or FeedConfig()
        self._processor = processor or BatchProcessorSelector(pooled=PooledBatchProcessor())
        self._connection_factory = connection_factory
        self._clock = clock
        self._rng = rng

        self._connections: Dict[str, _Connection] = {}
        self._lock = threading.RLock()
        self._queue: Deque[dict] = deque()
        self._latencies: Deque[float] = deque(maxlen=LATENCY_BUFFER_SIZE)
        self._metrics = FeedMetrics()
        self._connection_start_time = 0.0
        self._rate_mark = (0, clock())
        self._batch_timer: Optional[RepeatingTimer] = None

        self.current_throttle_ms = float(self.config.throttle_ms)
        self._subscribed_symbols: set = set()
        self._symbol_channels: Dict[str, EventChannel[PriceUpdate]] = {}

        self.price_updates = EventChannel[PriceUpdate]("price-updates")
        self.batched_updates = EventChannel[BatchedUpdate]("batched-updates")
        self.connection_status = StateChannel[bool]("connection-status", False)
        self.performance_metrics = StateChannel[Optional[FeedMetrics]]("feed-metrics", None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic batch processor."""
        if self._batch_timer is None:
            self._batch_timer = RepeatingTimer(self.config.throttle_ms / 1000.0, self.process_batch, "feed-batch")
        self._batch_timer.start()

    def destroy(self) -> None:
        self.disconnect()
        if self._batch_timer is not None:
            self._batch_timer.stop()
            self._batch_timer = None
        self._processor.shutdown()
        self._queue.clear()
        with self._lock:
            self._symbol_channels.clear()
            self._subscribed_symbols.clear()
        logger.info("[Feed] Service destroyed")

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self, url: Optional[str] = None) -> None:
        url = url or self.config.url
        with self._lock:
            if url in self._connections:
                logger.warning(f"[Feed] Already connected to {url}")
                return
            conn = _Connection(url=url)
            self._connections[url] = conn

        logger.info(f"[Feed] Connecting to {url}")
        self._connection_start_time = self._clock()
        conn.thread = threading.Thread(target=self._run_connection, args=(conn,), name=f"feed-{url}", daemon=True)
        conn.thread.start()

    def disconnect(self, url: Optional[str] = None) -> None:
        with self._lock:
            if url is not None:
                targets = [self._connections.pop(url)] if url in self._connections else []
            else:
                targets = list(self._connections.values())
                self._connections.clear()

        for conn in targets:
            conn.stop.set()
            self._close_socket(conn)

        if not self._any_open():
            self.connection_status.publish(False)
        logger.info(f"[Feed] Disconnected {url or 'all connections'}")

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff in seconds for the given reconnect attempt (0-based)."""
        backoff = min(
            self.config.initial_reconnect_delay_ms * (2 ** attempt),
            self.config.max_reconnect_delay_ms,
        )
        jitter = self._rng() * self.config.reconnect_jitter_ms
        return (backoff + jitter) / 1000.0

    def _run_connection(self, conn: _Connection) -> None:
        while not conn.stop.is_set():
            try:
                conn.socket = self._connection_factory(
                    conn.url, timeout=self.config.heartbeat_interval_ms / 1000.0
                )
            except Exception as exc:
                logger.warning(f"[Feed] Connection to {conn.url} failed: {exc}")
                if not self._wait_for_reconnect(conn):
                    break
                continue

            conn.attempts = 0
            self.on_open(conn.url)
            try:
                self._receive_loop(conn)
            except Exception as exc:
                if not conn.stop.is_set():
                    logger.warning(f"[Feed] Connection error on {conn.url}: {exc}")
            finally:
                self._close_socket(conn)
                self.on_close(conn.url)

            if conn.stop.is_set() or not self._wait_for_reconnect(conn):
                break

        with self._lock:
            if self._connections.get(conn.url) is conn:
                del self._connections[conn.url]

    def _receive_loop(self, conn: _Connection) -> None:
        while not conn.stop.is_set():
            try:
                raw = conn.socket.recv()
            except websocket.WebSocketTimeoutException:
                conn.socket.ping()
                continue
            if not raw:
                raise websocket.WebSocketConnectionClosedException("connection closed by server")
            self.handle_raw_message(conn.url, raw)

    def _wait_for_reconnect(self, conn: _Connection) -> bool:
        if conn.attempts >= self.config.max_reconnect_attempts:
            logger.error(f"[Feed] Giving up on {conn.url} after {conn.attempts} reconnect attempts")
            return False
        delay = self.reconnect_delay(conn.attempts)
        conn.attempts += 1
        self._metrics.reconnect_count += 1
        logger.info(f"[Feed] Reconnecting to {conn.url} in {delay:.1f}s (attempt {conn.attempts})")
        return not conn.stop.wait(delay)

    def _close_socket(self, conn: _Connection) -> None:
        if conn.socket is None:
            return
        try:
            conn.socket.close()
        except Exception as exc:
            logger.debug(f"[Feed] Error closing {conn.url}: {exc}")
        conn.socket = None

    def _any_open(self) -> bool:
        with self._lock:
            return any(c.is_open for c in self._connections.values())

    def on_open(self, url: str) -> None:
        """Mark the connection open and replay every current subscription."""
        with self._lock:
            conn = self._connections.get(url)
            symbols = sorted(self._subscribed_symbols)
        if conn is not None:
            conn.is_open = True
        logger.info(f"[Feed] Connection established to {url}")
        self.connection_status.publish(True)

        for symbol in symbols:
            self._send_subscription(symbol, True, only_url=url)

        if self._queue:
            logger.info(f"[Feed] Processing {len(self._queue)} queued messages")
            self.process_batch()

    def on_close(self, url: str) -> None:
        with self._lock:
            conn = self._connections.get(url)
        if conn is not None:
            conn.is_open = False
        logger.info(f"[Feed] Connection closed to {url}")
        if not self._any_open():
            self.connection_status.publish(False)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_raw_message(self, url: str, raw) -> bool:
        """
        Decode, throttle, de-duplicate and queue one inbound frame.

        Returns:
            True if the message was queued.
        """
        now = self._clock()
        self._metrics.messages_received += 1

        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self._metrics.parse_failures += 1
            logger.warning(f"[Feed] Dropping undecodable message from {url}: {exc}")
            return False
        if not isinstance(message, dict):
            self._metrics.parse_failures += 1
            logger.warning(f"[Feed] Dropping non-object message from {url}")
            return False

        with self._lock:
            conn = self._connections.get(url)
        if conn is not None:
            if (
                conn.last_accepted_at is not None
                and (now - conn.last_accepted_at) * 1000.0 < self.current_throttle_ms
            ):
                return False
            conn.last_accepted_at = now
            if message == conn.last_message:
                return False
            conn.last_message = message

        self._metrics.last_message_time = now
        if message.get("timestamp"):
            try:
                sent_at = epoch_seconds(message["timestamp"], now)
                self._record_latency((now - sent_at) * 1000.0)
            except (TypeError, ValueError):
                pass

        self.queue_message(message)
        return True

    def queue_message(self, message: dict) -> None:
        """Append to the bounded queue, shedding the oldest batch when full."""
        if len(self._queue) >= self.config.message_queue_limit:
            dropped = 0
            for _ in range(min(self.config.batch_size, len(self._queue))):
                try:
                    self._queue.popleft()
                except IndexError:
                    break
                dropped += 1
            self._metrics.messages_dropped += dropped
            logger.warning(f"[Feed] Message queue limit reached, dropped {dropped} oldest messages")
        self._queue.append(message)
        self._metrics.queue_size = len(self._queue)

    def process_batch(self) -> Optional[BatchedUpdate]:
        """
        Drain up to batch_size messages that were queued when the drain
        started, parse them and publish the results.
        """
        count = min(self.config.batch_size, len(self._queue))
        if count == 0:
            return None

        batch: List[dict] = []
        for _ in range(count):
            try:
                batch.append(self._queue.popleft())
            except IndexError:
                break

        result = self._processor.process(batch)
        self._metrics.batches_processed += 1
        self._metrics.messages_processed += result.processed
        self._metrics.parse_failures += len(result.failures)
        self._metrics.queue_size = len(self._queue)
        for failure in result.failures:
            logger.warning(f"[Feed] Error parsing message: {failure}")

        for update in result.updates:
            self.price_updates.publish(update)
            channel = self._symbol_channels.get(update.symbol)
            if channel is not None:
                channel.publish(update)

        if not result.updates:
            return None

        batched = BatchedUpdate(
            updates=result.updates,
            timestamp=self._clock(),
            batch_id=f"batch_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}",
        )
        self.batched_updates.publish(batched)
        return batched

    # ------------------------------------------------------------------
    # Symbol subscriptions
    # ------------------------------------------------------------------

    def subscribe_to_symbol(
        self,
        symbol: str,
        callback: Callable[[PriceUpdate], None],
        throttle_ms: Optional[float] = None,
        min_change_threshold: Optional[float] = None,
    ) -> Callable[[], None]:
        """
        Receive every parsed update for symbol.

        Args:
            throttle_ms:          Minimum spacing between deliveries to this callback.
            min_change_threshold: Skip updates whose change_percent is known and
                                  smaller in magnitude.

        Returns:
            unsubscribe()
        """
        last_delivery = [None]

        def deliver(update: PriceUpdate) -> None:
            if min_change_threshold and update.change_percent is not None:
                if abs(update.change_percent) < min_change_threshold:
                    return
            if throttle_ms:
                now = self._clock()
                if last_delivery[0] is not None and (now - last_delivery[0]) * 1000.0 < throttle_ms:
                    return
                last_delivery[0] = now
            callback(update)

        with self._lock:
            channel = self._symbol_channels.get(symbol)
            if channel is None:
                channel = self._symbol_channels[symbol] = EventChannel[PriceUpdate](f"feed-{symbol}")
            first = symbol not in self._subscribed_symbols
            self._subscribed_symbols.add(symbol)
        remove = channel.subscribe(deliver)
        if first:
            self._send_subscription(symbol, True)

        def unsubscribe() -> None:
            remove()
            with self._lock:
                if channel.subscriber_count > 0 or symbol not in self._subscribed_symbols:
                    return
                self._symbol_channels.pop(symbol, None)
                self._subscribed_symbols.discard(symbol)
            self._send_subscription(symbol, False)

        return unsubscribe

    @property
    def subscribed_symbols(self) -> List[str]:
        return sorted(self._subscribed_symbols)

    def _send_subscription(self, symbol: str, subscribe: bool, only_url: Optional[str] = None) -> None:
        payload = json.dumps({
            "type": "subscribe" if subscribe else "unsubscribe",
            "symbol": symbol,
            "timestamp": int(self._clock() * 1000),
        })
        with self._lock:
            targets = [c for c in self._connections.values() if only_url in (None, c.url)]
        for conn in targets:
            if conn.socket is None:
                continue
            try:
                conn.socket.send(payload)
            except Exception as exc:
                logger.error(f"[Feed] Failed to send subscription message to {conn.url}: {exc}")

    # ------------------------------------------------------------------
    # Metrics and tuning
    # ------------------------------------------------------------------

    def _record_latency(self, latency_ms: float) -> None:
        self._latencies.append(latency_ms)
        self._metrics.average_latency_ms = sum(self._latencies) / len(self._latencies)

    def message_rate(self) -> float:
        """Inbound messages per second since the previous call."""
        received, since = self._rate_mark
        now = self._clock()
        elapsed = now - since
        self._rate_mark = (self._metrics.messages_received, now)
        if elapsed <= 0:
            return 0.0
        return (self._metrics.messages_received - received) / elapsed

    def set_throttle_ms(self, throttle_ms: float) -> None:
        self.current_throttle_ms = float(throttle_ms)

    def update_config(self, **changes) -> None:
        self.config = replace(self.config, **changes)
        if "throttle_ms" in changes and self._batch_timer is not None:
            self._batch_timer.interval = self.config.throttle_ms / 1000.0
        logger.info(f"[Feed] Configuration updated: {changes}")

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def get_metrics(self) -> FeedMetrics:
        if self._any_open():
            self._metrics.connection_uptime = self._clock() - self._connection_start_time
        self._metrics.queue_size = len(self._queue)
        return replace(self._metrics)

    def publish_metrics(self) -> FeedMetrics:
        snapshot = self.get_metrics()
        self.performance_metrics.publish(snapshot)
        return snapshot

    def get_status(self) -> dict:
        with self._lock:
            connections = len(self._connections)
        return {
            "is_connected": bool(self.connection_status.value),
            "connections": connections,
            "subscribed_symbols": len(self._subscribed_symbols),
            "queue_size": len(self._queue),
            "performance_metrics": asdict(self.get_metrics()),
            "config": asdict(self.config),
            "current_throttle_ms": self.current_throttle_ms,
        }
