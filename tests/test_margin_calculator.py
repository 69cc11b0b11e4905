"""Tests for margin requirements, max loss and utilization bands."""

import pytest

from margin_calculator import MAX_LOSS_UNBOUNDED, MarginCalculator
from models import OptionLeg, Position


def _leg(option_type: str, action: str, strike: float, expiry, quantity: float = 1, premium: float = 0.0,
         symbol: str = "TSLY") -> OptionLeg:
    return OptionLeg(
        symbol=symbol, option_type=option_type, action=action, quantity=quantity,
        strike=strike, expiry=expiry, premium=premium,
    )


# ----------------------------------------------------------------------
# Utilization
# ----------------------------------------------------------------------

@pytest.mark.parametrize("margin, status", [
    (5_999, "safe"),
    (6_000, "amber"),
    (7_999, "amber"),
    (8_000, "red"),
])
def test_utilization_bands(margin: float, status: str) -> None:
    result = MarginCalculator.calculate_margin_utilization(margin, 10_000)
    assert result.status == status
    assert result.utilization == pytest.approx(margin / 100)


def test_no_cash_is_fully_utilized() -> None:
    result = MarginCalculator.calculate_margin_utilization(100, 0)
    assert result.utilization == 100.0
    assert result.status == "red"


# ----------------------------------------------------------------------
# Option margin
# ----------------------------------------------------------------------

def test_naked_call_uses_greater_reg_t_method(expiry) -> None:
    leg = _leg("call", "sell", 50.0, expiry, premium=1.20)
    # 120 + 20% of 5000 - 2 OTM x 100 = 920 beats 120 + 10% of 5000 = 620
    assert MarginCalculator.calculate_naked_margin(leg, 48.0) == pytest.approx(920.0)
    # Far OTM the 10% floor applies
    assert MarginCalculator.calculate_naked_margin(leg, 30.0) == pytest.approx(620.0)


def test_vertical_spread_margined_at_width(expiry) -> None:
    legs = [_leg("put", "sell", 30.0, expiry), _leg("put", "buy", 25.0, expiry)]
    assert MarginCalculator.is_spread(legs) is True
    assert MarginCalculator.calculate_margin(legs, 28.0) == pytest.approx(500.0)


def test_long_legs_need_no_margin(expiry) -> None:
    assert MarginCalculator.calculate_margin([_leg("call", "buy", 30.0, expiry)], 28.0) == 0.0


@pytest.mark.parametrize("legs, expected", [
    ([("call", "sell")], "covered-call"),
    ([("put", "sell")], "cash-secured-put"),
    ([("call", "sell"), ("put", "buy")], "collar"),
    ([("call", "buy"), ("put", "sell")], "custom"),
])
def test_classify_strategy(legs, expected, expiry) -> None:
    built = [_leg(option_type, action, 30.0, expiry) for option_type, action in legs]
    assert MarginCalculator.classify_strategy(built) == expected


# ----------------------------------------------------------------------
# Income ETF margin
# ----------------------------------------------------------------------

def test_covered_call_needs_no_margin(expiry) -> None:
    for symbol in ("MSTY", "SPY"):
        legs = [_leg("call", "sell", 50.0, expiry, symbol=symbol)]
        assert MarginCalculator.calculate_etf_margin(symbol, legs, 45.0) == 0.0


def test_cash_secured_put_holds_full_strike(expiry) -> None:
    legs = [_leg("put", "sell", 26.0, expiry, quantity=2, symbol="PLTY")]
    assert MarginCalculator.calculate_etf_margin("PLTY", legs, 28.0) == pytest.approx(5_200.0)


def test_put_on_etf_run_with_other_strategy_is_naked(expiry) -> None:
    legs = [_leg("put", "sell", 26.0, expiry, premium=1.0, symbol="MSTY")]
    # 100 + 520 - 200 OTM = 420 beats 100 + 260
    assert MarginCalculator.calculate_etf_margin("MSTY", legs, 28.0) == pytest.approx(420.0)


@pytest.mark.parametrize("days_to_ex_div, expected", [(3, 1_500.0), (10, 1_000.0), (0, 1_000.0)])
def test_collar_margin_with_dividend_window(days_to_ex_div: int, expected: float, expiry) -> None:
    legs = [_leg("call", "sell", 30.0, expiry), _leg("put", "buy", 20.0, expiry)]
    margin = MarginCalculator.calculate_etf_margin("TSLY", legs, 25.0, dividend_amount=0.8, days_to_ex_div=days_to_ex_div)
    assert margin == pytest.approx(expected)


def test_narrow_collar_floors_at_ten_percent_of_price(expiry) -> None:
    legs = [_leg("call", "sell", 36.0, expiry), _leg("put", "buy", 35.0, expiry)]
    assert MarginCalculator.calculate_etf_margin("TSLY", legs, 35.0) == pytest.approx(350.0)


def test_dividend_risk_factor_window() -> None:
    assert MarginCalculator.dividend_risk_factor(0) == 1.0
    assert MarginCalculator.dividend_risk_factor(5) == 1.5
    assert MarginCalculator.dividend_risk_factor(5.5) == 1.0


# ----------------------------------------------------------------------
# Positions
# ----------------------------------------------------------------------

def test_stock_position_margin_is_half_of_value(long_stock) -> None:
    assert MarginCalculator.calculate_position_margin(long_stock, 50.0) == pytest.approx(2_500.0)


def test_long_option_position_holds_no_margin(long_call) -> None:
    assert MarginCalculator.calculate_position_margin(long_call, 40.0) == 0.0


def test_short_put_position_uses_etf_rules(expiry) -> None:
    position = Position(
        id="P", symbol="PLTY", type="put", position_type="short",
        quantity=1, purchase_price=0.85, strike=26.0, expiry=expiry,
    )
    assert MarginCalculator.calculate_position_margin(position, 28.0) == pytest.approx(2_600.0)


def test_max_loss_stock(long_stock, short_stock) -> None:
    assert MarginCalculator.calculate_max_loss(long_stock) == pytest.approx(4_500.0)
    assert MarginCalculator.calculate_max_loss(long_stock, stop_loss=40.0) == pytest.approx(500.0)
    assert MarginCalculator.calculate_max_loss(short_stock) == MAX_LOSS_UNBOUNDED
    assert MarginCalculator.calculate_max_loss(short_stock, stop_loss=50.0) == pytest.approx(500.0)


def test_max_loss_options(long_call, expiry) -> None:
    assert MarginCalculator.calculate_max_loss(long_call) == pytest.approx(200.0)

    short_call = Position(
        id="SC", symbol="TSLY", type="call", position_type="short",
        quantity=1, purchase_price=2.0, strike=35.0, expiry=expiry,
    )
    assert MarginCalculator.calculate_max_loss(short_call) == MAX_LOSS_UNBOUNDED
    assert MarginCalculator.calculate_max_loss(short_call, stop_loss=40.0) == pytest.approx(300.0)
    assert MarginCalculator.calculate_max_loss(short_call, stop_loss=36.0) == 0.0
