"""
Batch parsing for the streaming feed.

Raw feed messages are turned into PriceUpdates by a pure function so the
work can run inline or on a worker without sharing state: the batch is
copied in, a ProcessedBatch is returned, nothing else crosses the boundary.
"""
import logging
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from config import WORKER_BATCH_THRESHOLD
from market_data.models import PriceUpdate

logger = logging.getLogger(__name__)

# Feed timestamps above this are milliseconds since the epoch
_MS_TIMESTAMP_FLOOR = 1e11


@dataclass
class ProcessedBatch:
    updates: List[PriceUpdate]
    processed: int
    failures: List[str] = field(default_factory=list)
    processed_at: float = 0.0


def epoch_seconds(value, default: float) -> float:
    """Feed timestamps may be epoch seconds or epoch milliseconds."""
    if value in (None, ""):
        return default
    ts = float(value)
    return ts / 1000.0 if ts > _MS_TIMESTAMP_FLOOR else ts


def _optional_float(value) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def parse_message(message: dict, now: Optional[float] = None) -> Optional[PriceUpdate]:
    """
    Parse one feed message.

    Accepts {"type": "price_update", symbol, price, timestamp, volume?,
    change?, changePercent?} and the legacy {symbol, price} shape.

    Returns:
        PriceUpdate, or None for messages that are not price data
        (subscription acks, heartbeats).

    Raises:
        ValueError: the message claims to be price data but is malformed.
    """
    if not isinstance(message, dict):
        raise ValueError(f"expected an object, got {type(message).__name__}")

    now = time.time() if now is None else now
    msg_type = message.get("type")

    if msg_type == "price_update":
        symbol = message.get("symbol")
        if not symbol:
            raise ValueError("price_update without symbol")
        price = _price(message.get("price"))
        volume = message.get("volume")
        return PriceUpdate(
            symbol=str(symbol),
            price=price,
            timestamp=epoch_seconds(message.get("timestamp"), now),
            volume=int(float(volume)) if volume not in (None, "") else None,
            change=_optional_float(message.get("change")),
            change_percent=_optional_float(message.get("changePercent")),
        )

    if msg_type is None and message.get("symbol") and message.get("price") is not None:
        return PriceUpdate(symbol=str(message["symbol"]), price=_price(message["price"]), timestamp=now)

    return None


def _price(value) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid price {value!r}")
    if not math.isfinite(price) or price <= 0:
        raise ValueError(f"invalid price {value!r}")
    return price


def parse_batch(batch: List[dict]) -> ProcessedBatch:
    """Parse a whole batch; malformed messages are reported, not raised."""
    now = time.time()
    updates: List[PriceUpdate] = []
    failures: List[str] = []
    for message in batch:
        try:
            update = parse_message(message, now)
        except (TypeError, ValueError) as exc:
            failures.append(f"{exc}: {message!r}")
            continue
        if update is not None:
            updates.append(update)
    return ProcessedBatch(updates=updates, processed=len(batch), failures=failures, processed_at=time.time())


class BatchProcessor(ABC):
    """process(batch) -> ProcessedBatch. Callers must not care which one runs."""

    @abstractmethod
    def process(self, batch: List[dict]) -> ProcessedBatch:
        ...

    def shutdown(self) -> None:
        pass


class InlineBatchProcessor(BatchProcessor):
    """Parses on the calling thread."""

    def process(self, batch: List[dict]) -> ProcessedBatch:
        return parse_batch(batch)


class PooledBatchProcessor(BatchProcessor):
    """
    Parses on an executor worker. Any concurrent.futures executor works; a
    ProcessPoolExecutor gives true isolation since parse_batch is picklable.
    """

    def __init__(self, executor: Optional[Executor] = None, timeout: float = 5.0):
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-worker")
        self._timeout = timeout

    def process(self, batch: List[dict]) -> ProcessedBatch:
        future = self._executor.submit(parse_batch, [dict(m) if isinstance(m, dict) else m for m in batch])
        return future.result(timeout=self._timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


class BatchProcessorSelector(BatchProcessor):
    """Inline for small batches, pooled for batches above the threshold."""

    def __init__(
        self,
        inline: Optional[BatchProcessor] = None,
        pooled: Optional[BatchProcessor] = None,
        threshold: int = WORKER_BATCH_THRESHOLD,
    ):
        self.inline = inline or InlineBatchProcessor()
        self.pooled = pooled
        self.threshold = threshold

    def select(self, size: int) -> BatchProcessor:
        if self.pooled is not None and size > self.threshold:
            return self.pooled
        return self.inline

    def process(self, batch: List[dict]) -> ProcessedBatch:
        processor = self.select(len(batch))
        try:
            return processor.process(batch)
        except Exception as exc:
            if processor is self.inline:
                raise
            logger.warning(f"Worker batch processing failed, parsing inline: {exc}")
            return self.inline.process(batch)

    def shutdown(self) -> None:
        self.inline.shutdown()
        if self.pooled is not None:
            self.pooled.shutdown()
