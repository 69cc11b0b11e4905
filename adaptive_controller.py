"""
Adaptive pacing for the pipeline.

Two knobs, one control law:
  - P&L recompute interval: fast while any position moved more than the
    volatility threshold, base otherwise.
  - Feed throttle: nudged up 10% under heavy message flow, down 10% when
    the feed is quiet, always relative to the current setting and clamped.
"""
import logging
from dataclasses import dataclass

from config import (
    BASE_UPDATE_INTERVAL_MS,
    FAST_UPDATE_INTERVAL_MS,
    HIGH_MESSAGE_RATE,
    LOW_MESSAGE_RATE,
    MAX_THROTTLE_MS,
    MIN_THROTTLE_MS,
    THROTTLE_MS,
    THROTTLE_STEP,
    VOLATILITY_THRESHOLD_PCT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerInput:
    """Observations for one monitoring tick."""
    message_rate: float  # inbound messages per second
    max_abs_percent_change: float  # across cached P&L results, percent units


@dataclass(frozen=True)
class ControllerDecision:
    update_interval_ms: int
    throttle_ms: float
    interval_changed: bool
    throttle_changed: bool


@dataclass
class AdaptiveController:
    """Explicit controller state; tick() is the whole control law."""
    base_update_interval_ms: int = BASE_UPDATE_INTERVAL_MS
    fast_update_interval_ms: int = FAST_UPDATE_INTERVAL_MS
    volatility_threshold_pct: float = VOLATILITY_THRESHOLD_PCT
    throttle_ms: float = THROTTLE_MS
    min_throttle_ms: float = MIN_THROTTLE_MS
    max_throttle_ms: float = MAX_THROTTLE_MS
    high_message_rate: float = HIGH_MESSAGE_RATE
    low_message_rate: float = LOW_MESSAGE_RATE
    throttle_step: float = THROTTLE_STEP
    adapt_interval: bool = True
    adapt_throttle: bool = True
    update_interval_ms: int = 0

    def __post_init__(self):
        if not self.update_interval_ms:
            self.update_interval_ms = self.base_update_interval_ms

    def set_base_interval(self, interval_ms: int) -> None:
        self.base_update_interval_ms = interval_ms
        self.update_interval_ms = interval_ms

    def tick(self, observed: ControllerInput) -> ControllerDecision:
        previous_interval = self.update_interval_ms
        previous_throttle = self.throttle_ms

        if self.adapt_interval:
            self.update_interval_ms = self._target_interval(observed.max_abs_percent_change)
        if self.adapt_throttle:
            self.throttle_ms = self._next_throttle(observed.message_rate)

        decision = ControllerDecision(
            update_interval_ms=self.update_interval_ms,
            throttle_ms=self.throttle_ms,
            interval_changed=self.update_interval_ms != previous_interval,
            throttle_changed=self.throttle_ms != previous_throttle,
        )

        if decision.interval_changed:
            logger.info(
                f"[Adaptive] Adjusting P&L frequency to {self.update_interval_ms}ms "
                f"(volatility: {observed.max_abs_percent_change:.2f}%)"
            )
        if decision.throttle_changed:
            logger.debug(
                f"[Adaptive] Adjusted throttling to {self.throttle_ms:.0f}ms "
                f"(rate: {observed.message_rate:.1f} msg/s)"
            )
        return decision

    def _target_interval(self, max_abs_percent_change: float) -> int:
        if max_abs_percent_change > self.volatility_threshold_pct:
            return self.fast_update_interval_ms
        return self.base_update_interval_ms

    def _next_throttle(self, message_rate: float) -> float:
        if message_rate > self.high_message_rate:
            return min(self.throttle_ms * (1 + self.throttle_step), self.max_throttle_ms)
        if message_rate < self.low_message_rate:
            return max(self.throttle_ms * (1 - self.throttle_step), self.min_throttle_ms)
        return self.throttle_ms
