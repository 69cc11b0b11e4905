"""Tests for the adaptive interval / throttle control law."""

import pytest

from adaptive_controller import AdaptiveController, ControllerInput


def _tick(controller: AdaptiveController, rate: float = 50.0, move: float = 0.0):
    return controller.tick(ControllerInput(message_rate=rate, max_abs_percent_change=move))


def test_volatile_portfolio_switches_to_fast_interval() -> None:
    controller = AdaptiveController(base_update_interval_ms=5000, fast_update_interval_ms=1000)

    decision = _tick(controller, move=2.5)

    assert decision.update_interval_ms == 1000
    assert decision.interval_changed is True


def test_threshold_is_exclusive() -> None:
    controller = AdaptiveController()
    assert _tick(controller, move=2.0).update_interval_ms == controller.base_update_interval_ms


def test_calm_portfolio_returns_to_base_interval() -> None:
    controller = AdaptiveController(base_update_interval_ms=5000, fast_update_interval_ms=1000)
    _tick(controller, move=3.0)
    decision = _tick(controller, move=0.4)
    assert decision.update_interval_ms == 5000
    assert decision.interval_changed is True


def test_interval_held_when_adaptation_disabled() -> None:
    controller = AdaptiveController(adapt_interval=False)
    decision = _tick(controller, move=10.0)
    assert decision.update_interval_ms == controller.base_update_interval_ms
    assert decision.interval_changed is False


def test_heavy_flow_raises_throttle_ten_percent() -> None:
    controller = AdaptiveController(throttle_ms=1000)
    decision = _tick(controller, rate=150.0)
    assert decision.throttle_ms == pytest.approx(1100)
    assert decision.throttle_changed is True


def test_quiet_feed_lowers_throttle_ten_percent() -> None:
    controller = AdaptiveController(throttle_ms=1000)
    assert _tick(controller, rate=2.0).throttle_ms == pytest.approx(900)


def test_moderate_flow_keeps_throttle() -> None:
    controller = AdaptiveController(throttle_ms=1000)
    decision = _tick(controller, rate=50.0)
    assert decision.throttle_ms == 1000
    assert decision.throttle_changed is False


def test_throttle_is_clamped() -> None:
    controller = AdaptiveController(throttle_ms=4900, max_throttle_ms=5000)
    assert _tick(controller, rate=500.0).throttle_ms == 5000
    assert _tick(controller, rate=500.0).throttle_changed is False

    controller = AdaptiveController(throttle_ms=105, min_throttle_ms=100)
    assert _tick(controller, rate=0.0).throttle_ms == 100


def test_set_base_interval_resets_current() -> None:
    controller = AdaptiveController()
    controller.set_base_interval(2000)
    assert controller.update_interval_ms == 2000
