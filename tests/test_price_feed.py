"""Tests for the streaming price feed. Sockets are faked; no network calls."""

import json
import queue
import threading
from typing import List

import pytest
import websocket

from batch_processor import InlineBatchProcessor
from price_feed import FeedConfig, StreamingPriceFeed

URL = "ws://feed.test"


class FakeSocket:
    """Blocking recv() fed from a queue; close() unblocks it."""

    def __init__(self):
        self.inbox: "queue.Queue[str]" = queue.Queue()
        self.sent: List[dict] = []
        self.sent_event = threading.Event()
        self.closed = False

    def send(self, payload: str) -> None:
        self.sent.append(json.loads(payload))
        self.sent_event.set()

    def recv(self) -> str:
        try:
            return self.inbox.get(timeout=0.5)
        except queue.Empty:
            raise websocket.WebSocketTimeoutException("idle")

    def ping(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
        self.inbox.put("")


class FakeConnectionFactory:
    def __init__(self, fail_first: int = 0):
        self.sockets: List[FakeSocket] = []
        self.fail_first = fail_first
        self.calls = 0

    def __call__(self, url: str, timeout: float = None) -> FakeSocket:
        self.calls += 1
        if self.calls <= self.fail_first:
            raise ConnectionRefusedError("refused")
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock


def _frame(symbol: str, price: float, **extra) -> str:
    return json.dumps({"type": "price_update", "symbol": symbol, "price": price, **extra})


@pytest.fixture
def factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()


@pytest.fixture
def feed(clock, factory):
    feed = StreamingPriceFeed(
        config=FeedConfig(url=URL, throttle_ms=1000, initial_reconnect_delay_ms=1, reconnect_jitter_ms=0),
        processor=InlineBatchProcessor(),
        connection_factory=factory,
        clock=clock,
        rng=lambda: 0.5,
    )
    yield feed
    feed.destroy()


def _connect_and_wait(feed: StreamingPriceFeed) -> None:
    opened = threading.Event()
    feed.connection_status.subscribe(lambda is_open: is_open and opened.set())
    feed.connect()
    assert opened.wait(5), "connection never opened"


# ----------------------------------------------------------------------
# Queue and batches
# ----------------------------------------------------------------------

def test_queue_overflow_sheds_oldest_batch(clock) -> None:
    feed = StreamingPriceFeed(
        config=FeedConfig(message_queue_limit=5, batch_size=2),
        processor=InlineBatchProcessor(),
        clock=clock,
    )
    for i in range(6):
        feed.queue_message({"symbol": "MSTY", "price": 40 + i})

    assert feed.queue_size == 4
    assert feed.get_metrics().messages_dropped == 2
    batch = feed.process_batch()
    assert [u.price for u in batch.updates] == [42, 43]


def test_process_batch_publishes_updates_and_batch(feed) -> None:
    singles, batches = [], []
    feed.price_updates.subscribe(singles.append)
    feed.batched_updates.subscribe(batches.append)

    feed.handle_raw_message("replay", _frame("MSTY", 45.0))
    feed.handle_raw_message("replay", _frame("PLTY", -1))
    feed.handle_raw_message("replay", _frame("TSLY", 35.0))
    batch = feed.process_batch()

    assert [u.symbol for u in singles] == ["MSTY", "TSLY"]
    assert batches == [batch]
    assert batch.symbols == ["MSTY", "TSLY"]
    assert batch.batch_id.startswith("batch_")
    metrics = feed.get_metrics()
    assert metrics.messages_processed == 3
    assert metrics.parse_failures == 1
    assert metrics.batches_processed == 1


def test_process_batch_limited_to_batch_size(clock) -> None:
    feed = StreamingPriceFeed(config=FeedConfig(batch_size=2), processor=InlineBatchProcessor(), clock=clock)
    for i in range(5):
        feed.queue_message({"symbol": f"S{i}", "price": 10})
    assert len(feed.process_batch().updates) == 2
    assert feed.queue_size == 3


def test_empty_queue_yields_no_batch(feed) -> None:
    assert feed.process_batch() is None


def test_undecodable_frames_count_as_parse_failures(feed) -> None:
    assert feed.handle_raw_message("replay", "{not json") is False
    assert feed.handle_raw_message("replay", "[1, 2]") is False
    metrics = feed.get_metrics()
    assert metrics.parse_failures == 2
    assert metrics.messages_received == 2


def test_latency_from_millisecond_timestamps(feed, clock) -> None:
    feed.handle_raw_message("replay", _frame("MSTY", 45.0, timestamp=int((clock.now - 0.25) * 1000)))
    assert feed.get_metrics().average_latency_ms == pytest.approx(250, abs=1)


def test_message_rate_since_previous_call(feed, clock) -> None:
    for i in range(5):
        feed.handle_raw_message("replay", _frame("MSTY", 40 + i))
    clock.advance(2)
    assert feed.message_rate() == pytest.approx(2.5)
    clock.advance(1)
    assert feed.message_rate() == 0.0


# ----------------------------------------------------------------------
# Symbol subscriptions
# ----------------------------------------------------------------------

def test_symbol_subscriber_receives_only_its_symbol(feed) -> None:
    received = []
    feed.subscribe_to_symbol("MSTY", received.append)
    feed.handle_raw_message("replay", _frame("MSTY", 45.0))
    feed.handle_raw_message("replay", _frame("TSLY", 35.0))
    feed.process_batch()
    assert [u.symbol for u in received] == ["MSTY"]


def test_symbol_subscriber_throttle_and_threshold(feed, clock) -> None:
    throttled, filtered = [], []
    feed.subscribe_to_symbol("MSTY", throttled.append, throttle_ms=1000)
    feed.subscribe_to_symbol("MSTY", filtered.append, min_change_threshold=1.0)

    feed.handle_raw_message("replay", _frame("MSTY", 45.0, changePercent=0.4))
    feed.handle_raw_message("replay", _frame("MSTY", 46.0, changePercent=2.5))
    feed.process_batch()

    assert [u.price for u in throttled] == [45.0]
    assert [u.price for u in filtered] == [46.0]


def test_unsubscribe_last_subscriber_forgets_symbol(feed) -> None:
    first = feed.subscribe_to_symbol("MSTY", lambda u: None)
    second = feed.subscribe_to_symbol("MSTY", lambda u: None)
    first()
    assert feed.subscribed_symbols == ["MSTY"]
    second()
    assert feed.subscribed_symbols == []


# ----------------------------------------------------------------------
# Connections
# ----------------------------------------------------------------------

def test_reconnect_delay_backs_off_and_caps(clock) -> None:
    feed = StreamingPriceFeed(
        config=FeedConfig(initial_reconnect_delay_ms=1000, max_reconnect_delay_ms=30_000, reconnect_jitter_ms=1000),
        processor=InlineBatchProcessor(),
        clock=clock,
        rng=lambda: 0.5,
    )
    assert feed.reconnect_delay(0) == pytest.approx(1.5)
    assert feed.reconnect_delay(3) == pytest.approx(8.5)
    assert feed.reconnect_delay(10) == pytest.approx(30.5)


def test_open_connection_replays_subscriptions(feed, factory) -> None:
    feed.subscribe_to_symbol("MSTY", lambda u: None)
    _connect_and_wait(feed)

    sock = factory.sockets[0]
    assert sock.sent_event.wait(5)
    assert sock.sent[0]["type"] == "subscribe"
    assert sock.sent[0]["symbol"] == "MSTY"
    assert feed.get_status()["is_connected"] is True


def test_subscribe_and_unsubscribe_sent_on_live_connection(feed, factory) -> None:
    _connect_and_wait(feed)
    sock = factory.sockets[0]

    unsubscribe = feed.subscribe_to_symbol("TSLY", lambda u: None)
    unsubscribe()

    assert [(m["type"], m["symbol"]) for m in sock.sent] == [("subscribe", "TSLY"), ("unsubscribe", "TSLY")]


def test_connection_throttle_and_dedup(feed, clock) -> None:
    _connect_and_wait(feed)

    assert feed.handle_raw_message(URL, _frame("MSTY", 45.0)) is True
    clock.advance(0.5)
    assert feed.handle_raw_message(URL, _frame("MSTY", 45.1)) is False
    clock.advance(1.0)
    assert feed.handle_raw_message(URL, _frame("MSTY", 45.0)) is False
    clock.advance(1.0)
    assert feed.handle_raw_message(URL, _frame("MSTY", 45.2)) is True


def test_lower_throttle_admits_faster_messages(feed, clock) -> None:
    _connect_and_wait(feed)
    feed.set_throttle_ms(100)

    assert feed.handle_raw_message(URL, _frame("MSTY", 45.0)) is True
    clock.advance(0.2)
    assert feed.handle_raw_message(URL, _frame("MSTY", 45.1)) is True


def test_failed_connect_is_retried(clock) -> None:
    factory = FakeConnectionFactory(fail_first=2)
    feed = StreamingPriceFeed(
        config=FeedConfig(url=URL, initial_reconnect_delay_ms=1, max_reconnect_delay_ms=5, reconnect_jitter_ms=0),
        processor=InlineBatchProcessor(),
        connection_factory=factory,
        clock=clock,
    )
    try:
        _connect_and_wait(feed)
        assert factory.calls == 3
        assert feed.get_metrics().reconnect_count == 2
    finally:
        feed.destroy()


def test_disconnect_reports_closed(feed, factory) -> None:
    _connect_and_wait(feed)
    feed.disconnect()
    assert factory.sockets[0].closed is True
    assert feed.connection_status.value is False


def test_update_config_changes_batch_size(feed) -> None:
    feed.update_config(batch_size=7)
    assert feed.config.batch_size == 7
    assert feed.get_status()["config"]["batch_size"] == 7
