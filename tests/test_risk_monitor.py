"""Tests for Greeks heuristics, volatility helpers and portfolio risk alerts."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import pytest

from dividend_calendar import DividendCalendar
from models import Position, StrategyConfig
from risk_monitor import (
    RiskMonitor,
    calculate_dividend_risk,
    calculate_volatility_impact,
    estimate_early_assignment_probability,
    historical_volatility,
    load_historical_volatility,
    time_to_expiry,
)


def _stock(position_id: str, side: str, quantity: float, symbol: str = "MSTY") -> Position:
    return Position(
        id=position_id, symbol=symbol, type="stock", position_type=side,
        quantity=quantity, purchase_price=45.0,
    )


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def test_short_history_uses_default_volatility() -> None:
    assert historical_volatility([100.0] * 10) == 0.25


def test_flat_prices_clamp_to_floor() -> None:
    assert historical_volatility([100.0] * 40) == 0.1


def test_wild_prices_clamp_to_ceiling() -> None:
    assert historical_volatility([100.0, 200.0] * 20) == 2.0


def test_alternating_one_percent_moves() -> None:
    closes = [100.0, 101.0] * 15
    expected = np.log(1.01) * np.sqrt(252)
    assert historical_volatility(closes) == pytest.approx(expected, rel=1e-2)


def test_load_historical_volatility_reads_yahoo_closes() -> None:
    history = pd.DataFrame({"Close": [100.0, 101.0] * 15})
    ticker = MagicMock()
    ticker.history.return_value = history
    with patch("risk_monitor.yf.Ticker", return_value=ticker):
        assert load_historical_volatility("MSTY") == pytest.approx(historical_volatility(history["Close"]))
    ticker.history.assert_called_once_with(period="1y")


def test_load_historical_volatility_defaults_on_empty_history() -> None:
    ticker = MagicMock()
    ticker.history.return_value = pd.DataFrame()
    with patch("risk_monitor.yf.Ticker", return_value=ticker):
        assert load_historical_volatility("MSTY") == 0.25


def test_volatility_impact_scales_by_vix_baseline() -> None:
    # 30% vol is 1.5x a VIX of 20; covered calls carry a 1.2 multiplier
    assert calculate_volatility_impact("covered-call", 1_000.0, 0.30) == pytest.approx(1_800.0)
    assert calculate_volatility_impact("unknown", 1_000.0, 0.20) == pytest.approx(1_300.0)


@pytest.mark.parametrize("days_to_div, days_to_expiry, expected", [
    (10, 30, 10 * (1 - 10 / 30)),
    (None, 30, 0.0),
    (40, 30, 0.0),
    (0, 30, 0.0),
])
def test_dividend_risk(days_to_div, days_to_expiry, expected) -> None:
    assert calculate_dividend_risk(days_to_div, days_to_expiry) == pytest.approx(expected)


def test_early_assignment_probability() -> None:
    at_money = estimate_early_assignment_probability("call", 35.0, 35.0, 0.25, 0.3)
    deep_itm = estimate_early_assignment_probability("call", 50.0, 35.0, 0.25, 0.3)
    far_otm_put = estimate_early_assignment_probability("put", 50.0, 35.0, 0.25, 0.3)

    assert at_money == pytest.approx(0.5)
    assert deep_itm > 0.95
    assert far_otm_put < 0.05
    assert estimate_early_assignment_probability("put", 30.0, 35.0, 0.0, 0.3) == 1.0


def test_time_to_expiry(expiry) -> None:
    assert time_to_expiry(expiry, expiry - timedelta(days=73)) == pytest.approx(0.2)
    assert time_to_expiry(expiry, expiry + timedelta(days=1)) == 0.0
    assert time_to_expiry(None) == 0.0


# ----------------------------------------------------------------------
# Greeks
# ----------------------------------------------------------------------

def test_stock_delta_follows_side(long_stock, short_stock) -> None:
    assert RiskMonitor.calculate_delta(long_stock, 45.0) == 1.0
    assert RiskMonitor.calculate_delta(short_stock, 45.0) == -1.0


def test_option_delta_is_moneyness_step(long_call, expiry) -> None:
    assert RiskMonitor.calculate_delta(long_call, 36.0) == 1.0
    assert RiskMonitor.calculate_delta(long_call, 34.0) == 0.0

    short_put = Position(
        id="SP", symbol="TSLY", type="put", position_type="short",
        quantity=1, purchase_price=1.0, strike=35.0, expiry=expiry,
    )
    assert RiskMonitor.calculate_delta(short_put, 30.0) == -1.0


def test_position_risk_for_short_option(as_of, expiry) -> None:
    short_call = Position(
        id="SC", symbol="TSLY", type="call", position_type="short",
        quantity=1, purchase_price=1.0, strike=35.0, expiry=expiry,
    )
    risk = RiskMonitor().calculate_position_risk(short_call, 40.0, volatility=0.3, as_of=as_of)

    assert risk.delta == -1.0
    assert 0.5 < risk.early_assignment_prob < 1.0
    assert risk.theta < 0 < risk.vega
    assert risk.gamma > 0


def test_long_option_has_no_assignment_risk(long_call, as_of) -> None:
    risk = RiskMonitor().calculate_position_risk(long_call, 40.0, as_of=as_of)
    assert risk.early_assignment_prob == 0.0
    assert risk.margin_requirement == 0.0
    assert risk.max_loss == pytest.approx(200.0)


# ----------------------------------------------------------------------
# Strategy and portfolio
# ----------------------------------------------------------------------

def test_collar_strategy_risk_near_ex_dividend(as_of, expiry) -> None:
    calendar = DividendCalendar({"TSLY": [(as_of + timedelta(days=3), 0.80)]})
    strategy = StrategyConfig(
        symbol="TSLY", type="collar", quantity=1, strike=38.0, expiry=expiry,
        put_strike=32.0, premium=0.9, put_premium=0.6,
    )

    risk = RiskMonitor(dividend_calendar=calendar).calculate_strategy_risk(
        strategy, 35.0, 10_000.0, volatility=0.30, as_of=as_of,
    )

    assert risk.margin_requirement == pytest.approx(900.0)
    assert risk.dividend_risk == pytest.approx(9.0)
    assert risk.volatility_impact == pytest.approx(3_500.0 * 1.5 * 1.1)
    assert risk.margin_utilization.utilization == pytest.approx(9.0)
    assert risk.margin_utilization.status == "safe"


def test_portfolio_delta_in_share_equivalents() -> None:
    positions = [_stock("L", "long", 100), _stock("S", "short", 10, symbol="TSLA")]
    risk = RiskMonitor().calculate_portfolio_risk(positions, {"MSTY": 45.0, "TSLA": 200.0}, 100_000.0)

    assert risk.total_delta == pytest.approx(90.0)
    assert risk.total_margin == pytest.approx(100 * 45.0 * 0.5 + 10 * 200.0 * 0.5)
    assert risk.alerts == []
    assert list(risk.to_dataframe()["position_id"]) == ["L", "S"]


def test_unpriced_positions_are_skipped() -> None:
    risk = RiskMonitor().calculate_portfolio_risk([_stock("L", "long", 100)], {}, 10_000.0)
    assert risk.positions == {}
    assert risk.total_delta == 0.0


def test_large_book_raises_alerts() -> None:
    positions = [_stock("L", "long", 2_000)]
    risk = RiskMonitor().calculate_portfolio_risk(positions, {"MSTY": 45.0}, 10_000.0)

    codes = {alert.code: alert.level for alert in risk.alerts}
    assert codes == {"MARGIN_UTILIZATION": "critical", "PORTFOLIO_DELTA": "warning"}
    assert risk.margin_utilization.status == "red"
