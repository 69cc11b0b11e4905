"""Tests for feed message parsing and batch processor selection."""

import math

import pytest

from batch_processor import (
    BatchProcessor,
    BatchProcessorSelector,
    InlineBatchProcessor,
    PooledBatchProcessor,
    ProcessedBatch,
    epoch_seconds,
    parse_batch,
    parse_message,
)


def test_parses_full_price_update() -> None:
    update = parse_message({
        "type": "price_update",
        "symbol": "MSTY",
        "price": 45.5,
        "timestamp": 1_700_000_000_000,
        "volume": 1200,
        "change": 0.5,
        "changePercent": 1.11,
    }, now=0.0)

    assert update.symbol == "MSTY"
    assert update.price == 45.5
    assert update.timestamp == 1_700_000_000.0
    assert update.volume == 1200
    assert update.change == 0.5
    assert update.change_percent == 1.11


def test_parses_legacy_shape_with_receive_time() -> None:
    update = parse_message({"symbol": "TSLY", "price": "35.2"}, now=123.0)
    assert update.price == 35.2
    assert update.timestamp == 123.0
    assert update.change is None


def test_non_price_messages_are_ignored() -> None:
    assert parse_message({"type": "subscribed", "symbol": "MSTY"}) is None
    assert parse_message({"type": "heartbeat"}) is None


@pytest.mark.parametrize("price", [0, -1, "abc", None, math.inf])
def test_bad_price_is_rejected(price) -> None:
    with pytest.raises(ValueError):
        parse_message({"type": "price_update", "symbol": "MSTY", "price": price})


def test_price_update_without_symbol_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_message({"type": "price_update", "price": 10})


def test_epoch_seconds_accepts_both_units() -> None:
    assert epoch_seconds(1_700_000_000, 0.0) == 1_700_000_000
    assert epoch_seconds(1_700_000_000_500, 0.0) == 1_700_000_000.5
    assert epoch_seconds(None, 42.0) == 42.0


def test_parse_batch_reports_failures_and_keeps_the_rest() -> None:
    batch = [
        {"type": "price_update", "symbol": "MSTY", "price": 45.0},
        {"type": "price_update", "symbol": "PLTY", "price": -3},
        {"type": "ack"},
        "not an object",
    ]
    result = parse_batch(batch)

    assert [u.symbol for u in result.updates] == ["MSTY"]
    assert result.processed == 4
    assert len(result.failures) == 2


class _ExplodingProcessor(BatchProcessor):
    def process(self, batch):
        raise RuntimeError("worker crashed")


class _RecordingProcessor(BatchProcessor):
    def __init__(self):
        self.sizes = []

    def process(self, batch):
        self.sizes.append(len(batch))
        return ProcessedBatch(updates=[], processed=len(batch))


def test_selector_uses_pool_only_above_threshold() -> None:
    pooled = _RecordingProcessor()
    selector = BatchProcessorSelector(pooled=pooled, threshold=10)

    assert isinstance(selector.select(10), InlineBatchProcessor)
    assert selector.select(11) is pooled


def test_selector_without_pool_always_inline() -> None:
    selector = BatchProcessorSelector()
    assert selector.select(1000) is selector.inline


def test_selector_falls_back_inline_when_worker_fails() -> None:
    selector = BatchProcessorSelector(pooled=_ExplodingProcessor(), threshold=0)
    result = selector.process([{"type": "price_update", "symbol": "MSTY", "price": 45.0}])
    assert [u.symbol for u in result.updates] == ["MSTY"]


def test_pooled_processor_parses_on_worker() -> None:
    pooled = PooledBatchProcessor()
    try:
        result = pooled.process([{"symbol": "SPY", "price": 400}] * 12)
    finally:
        pooled.shutdown()
    assert len(result.updates) == 12
