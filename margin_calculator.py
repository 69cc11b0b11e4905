"""
Margin Calculator - Reg-T margin requirements for option trades

Pure functions over a snapshot of legs, positions and prices. Degenerate
inputs (zero cash, empty legs) are handled by explicit branches rather than
exceptions; malformed legs are rejected earlier by TradeValidator.
"""
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from config import (
    COLLAR_MIN_SPREAD_PCT,
    CONTRACT_MULTIPLIER,
    DIVIDEND_RISK_FACTOR,
    DIVIDEND_RISK_WINDOW_DAYS,
    INCOME_ETF_STRATEGIES,
    MARGIN_AMBER_PCT,
    MARGIN_RED_PCT,
    NAKED_MARGIN_MIN_PCT,
    NAKED_MARGIN_PCT,
    STOCK_INITIAL_MARGIN_PCT,
)
from models import OptionLeg, Position

logger = logging.getLogger(__name__)

# Returned by calculate_max_loss when the loss has no upper bound
MAX_LOSS_UNBOUNDED = sys.float_info.max


@dataclass(frozen=True)
class MarginUtilization:
    utilization: float  # percent of cash
    status: str  # safe / amber / red


class MarginCalculator:
    """Margin requirements, max loss and utilization for legs and positions"""

    @staticmethod
    def calculate_margin(legs: List[OptionLeg], underlying_price: float) -> float:
        """
        Total margin requirement for a set of option legs

        A two-leg spread (opposite actions) is margined at its strike width.
        Anything else is the sum of naked margin over the short legs; long
        legs are paid for in full and need no margin.

        Args:
            legs: Option legs of the proposed trade
            underlying_price: Current price of the underlying

        Returns:
            Margin requirement in USD
        """
        if MarginCalculator.is_spread(legs):
            return MarginCalculator.calculate_spread_margin(legs)
        return sum(
            MarginCalculator.calculate_naked_margin(leg, underlying_price)
            for leg in legs
            if leg.is_short
        )

    @staticmethod
    def calculate_naked_margin(leg: OptionLeg, underlying_price: float) -> float:
        """
        Reg-T naked option margin, the greater of:
          1. premium + 20% of strike exposure - out-of-the-money amount
          2. premium + 10% of strike exposure
        """
        contracts = leg.quantity * CONTRACT_MULTIPLIER
        option_value = (leg.premium or 0.0) * contracts
        strike_value = leg.strike * contracts

        if leg.option_type == "call":
            out_of_money = max(0.0, leg.strike - underlying_price)
        else:
            out_of_money = max(0.0, underlying_price - leg.strike)

        method1 = option_value + NAKED_MARGIN_PCT * strike_value - out_of_money * contracts
        method2 = option_value + NAKED_MARGIN_MIN_PCT * strike_value
        return max(method1, method2)

    @staticmethod
    def calculate_spread_margin(legs: List[OptionLeg]) -> float:
        """Short strike exposure minus long strike exposure, floored at 0"""
        short_notional = sum(leg.notional for leg in legs if leg.is_short)
        long_notional = sum(leg.notional for leg in legs if not leg.is_short)
        return max(0.0, short_notional - long_notional)

    @staticmethod
    def is_spread(legs: List[OptionLeg]) -> bool:
        return len(legs) == 2 and legs[0].action != legs[1].action

    @staticmethod
    def classify_strategy(legs: List[OptionLeg]) -> str:
        """
        Name the income strategy a leg set represents

        Returns:
            'covered-call', 'cash-secured-put', 'collar' or 'custom'
        """
        short_calls = [l for l in legs if l.option_type == "call" and l.is_short]
        long_calls = [l for l in legs if l.option_type == "call" and not l.is_short]
        short_puts = [l for l in legs if l.option_type == "put" and l.is_short]
        long_puts = [l for l in legs if l.option_type == "put" and not l.is_short]

        if short_calls and long_puts and not short_puts and not long_calls:
            return "collar"
        if short_calls and not (long_calls or short_puts or long_puts):
            return "covered-call"
        if short_puts and not (short_calls or long_calls or long_puts):
            return "cash-secured-put"
        return "custom"

    @staticmethod
    def dividend_risk_factor(days_to_ex_div: float) -> float:
        """1.5x inside the ex-dividend window, 1.0 otherwise"""
        if 0 < days_to_ex_div <= DIVIDEND_RISK_WINDOW_DAYS:
            return DIVIDEND_RISK_FACTOR
        return 1.0

    @staticmethod
    def calculate_etf_margin(
        symbol: str,
        legs: List[OptionLeg],
        underlying_price: float,
        dividend_amount: float = 0.0,
        days_to_ex_div: float = 0.0,
    ) -> float:
        """
        Strategy-aware margin for income ETFs (MSTY, PLTY, TSLY)

        - Covered call: 0, the shares cover the obligation (any symbol)
        - Cash-secured put on a recognized ETF: full strike x 100 x quantity
        - Collar on a recognized ETF: max(call - put strike, 10% of price)
          x 100 x quantity, times 1.5 within 5 days of the ex-dividend date
        - Anything else: calculate_margin()

        Args:
            symbol: Underlying symbol
            legs: Option legs of the strategy
            underlying_price: Current price of the ETF
            dividend_amount: Next dividend per share (for logging)
            days_to_ex_div: Days until the next ex-dividend date

        Returns:
            Margin requirement in USD
        """
        strategy = MarginCalculator.classify_strategy(legs)
        recognized = INCOME_ETF_STRATEGIES.get(symbol.upper()) if symbol else None

        if strategy == "covered-call":
            return 0.0

        if recognized and strategy == recognized == "cash-secured-put":
            put = next(l for l in legs if l.option_type == "put" and l.is_short)
            return put.strike * CONTRACT_MULTIPLIER * put.quantity

        if recognized and strategy == recognized == "collar":
            call = next(l for l in legs if l.option_type == "call" and l.is_short)
            put = next(l for l in legs if l.option_type == "put" and not l.is_short)
            spread = max(call.strike - put.strike, COLLAR_MIN_SPREAD_PCT * underlying_price)
            factor = MarginCalculator.dividend_risk_factor(days_to_ex_div)
            if factor > 1:
                logger.warning(
                    f"Dividend risk: {symbol} ${dividend_amount:.2f} dividend in {days_to_ex_div:g} days "
                    f"- applying {factor}x margin factor"
                )
            return spread * CONTRACT_MULTIPLIER * call.quantity * factor

        return MarginCalculator.calculate_margin(legs, underlying_price)

    @staticmethod
    def position_to_leg(position: Position) -> OptionLeg:
        return OptionLeg(
            symbol=position.symbol,
            option_type=position.type,
            action="buy" if position.is_long else "sell",
            quantity=position.size,
            strike=position.strike,
            expiry=position.expiry,
            premium=position.current_price or position.purchase_price,
            id=position.id,
        )

    @staticmethod
    def calculate_position_margin(
        position: Position,
        underlying_price: float,
        days_to_ex_div: float = 0.0,
    ) -> float:
        """Margin held against one open position"""
        if not position.is_option:
            return position.size * underlying_price * STOCK_INITIAL_MARGIN_PCT
        if position.is_long:
            return 0.0
        return MarginCalculator.calculate_etf_margin(
            position.symbol,
            [MarginCalculator.position_to_leg(position)],
            underlying_price,
            days_to_ex_div=days_to_ex_div,
        )

    @staticmethod
    def calculate_max_loss(position: Position, stop_loss: Optional[float] = None) -> float:
        """
        Worst-case loss for a position

        - Long stock: full position value, or down to the stop
        - Short stock: unbounded, or up to the stop
        - Long option: premium paid
        - Short option: unbounded without a stop; with a stop, intrinsic
          value at the stop less premium received

        Returns:
            Loss in USD (>= 0), MAX_LOSS_UNBOUNDED when there is no bound
        """
        price = position.current_price or position.purchase_price
        size = position.size

        if not position.is_option:
            if position.is_long:
                if stop_loss is None:
                    return price * size
                return max(0.0, (price - stop_loss) * size)
            if stop_loss is None:
                return MAX_LOSS_UNBOUNDED
            return max(0.0, (stop_loss - price) * size)

        contracts = size * CONTRACT_MULTIPLIER
        if position.is_long:
            return position.purchase_price * contracts

        if stop_loss is None:
            return MAX_LOSS_UNBOUNDED
        if position.type == "call":
            intrinsic = max(0.0, stop_loss - position.strike)
        else:
            intrinsic = max(0.0, position.strike - stop_loss)
        return max(0.0, (intrinsic - position.purchase_price) * contracts)

    @staticmethod
    def calculate_margin_utilization(margin_requirement: float, cash_balance: float) -> MarginUtilization:
        """
        Margin as a percent of cash with a status band

        Returns:
            MarginUtilization; status 'red' at >= 80%, 'amber' at >= 60%,
            otherwise 'safe'. No cash means 100% / red.
        """
        if cash_balance <= 0:
            return MarginUtilization(utilization=100.0, status="red")

        utilization = margin_requirement * 100 / cash_balance
        if utilization >= MARGIN_RED_PCT:
            status = "red"
        elif utilization >= MARGIN_AMBER_PCT:
            status = "amber"
        else:
            status = "safe"
        return MarginUtilization(utilization=utilization, status=status)
