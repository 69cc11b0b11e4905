"""
Consumer-facing subscriptions to portfolio P&L summaries.

Filters run before delivery; a subscriber whose filter leaves nothing for a
cycle is not called for that cycle.
"""
import logging
from dataclasses import replace
from typing import Callable, Iterable, Optional

from events import EventChannel
from models import PLUpdate, PortfolioPLSummary

logger = logging.getLogger(__name__)


def filter_summary(
    summary: PortfolioPLSummary,
    symbols: Optional[Iterable[str]] = None,
    min_change_threshold: Optional[float] = None,
) -> Optional[PortfolioPLSummary]:
    """
    Apply a subscriber's filters to a summary.

    Returns:
        The (possibly narrowed) summary, or None if nothing passes.
    """
    if symbols is not None:
        allowed = set(symbols)
        positions = [p for p in summary.positions if p.symbol in allowed]
        if not positions:
            return None
        summary = replace(summary, positions=positions)

    if min_change_threshold:
        significant = [p for p in summary.positions if abs(p.percent_change) >= min_change_threshold]
        if not significant:
            return None

    return summary


class SubscriptionManager:
    """Fan-out of PortfolioPLSummary and per-symbol PLUpdate to consumers."""

    def __init__(self):
        self._portfolio = EventChannel[PortfolioPLSummary]("portfolio-pl")
        self._symbols: dict = {}

    def subscribe(
        self,
        callback: Callable[[PortfolioPLSummary], None],
        symbols: Optional[Iterable[str]] = None,
        min_change_threshold: Optional[float] = None,
    ) -> Callable[[], None]:
        """Subscribe to portfolio summaries; returns unsubscribe()."""
        allowed = list(symbols) if symbols is not None else None

        def deliver(summary: PortfolioPLSummary) -> None:
            filtered = filter_summary(summary, allowed, min_change_threshold)
            if filtered is not None:
                callback(filtered)

        return self._portfolio.subscribe(deliver)

    def subscribe_symbol(
        self,
        symbol: str,
        callback: Callable[[PLUpdate], None],
        min_change_threshold: Optional[float] = None,
    ) -> Callable[[], None]:
        """Subscribe to every position update on one symbol; returns unsubscribe()."""
        channel = self._symbols.get(symbol)
        if channel is None:
            channel = self._symbols[symbol] = EventChannel[PLUpdate](f"pl-{symbol}")

        def deliver(update: PLUpdate) -> None:
            if min_change_threshold and abs(update.percent_change) < min_change_threshold:
                return
            callback(update)

        unsubscribe_channel = channel.subscribe(deliver)

        def unsubscribe() -> None:
            unsubscribe_channel()
            if channel.subscriber_count == 0:
                self._symbols.pop(symbol, None)

        return unsubscribe

    def publish(self, summary: PortfolioPLSummary) -> None:
        self._portfolio.publish(summary)
        if not self._symbols:
            return
        for update in summary.positions:
            channel = self._symbols.get(update.symbol)
            if channel is not None:
                channel.publish(update)

    @property
    def subscriber_count(self) -> int:
        return self._portfolio.subscriber_count + sum(c.subscriber_count for c in self._symbols.values())

    def clear(self) -> None:
        self._portfolio.clear()
        self._symbols.clear()
