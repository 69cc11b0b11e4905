"""
Trade Service - pre-trade validation, buying-power check and execution

Every violation is collected before anything is priced; a trade that fails
the margin check never touches portfolio state.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from dividend_calendar import DividendCalendar
from errors import InsufficientBuyingPower, MarginExceeded, TradeExecutionError, ValidationFailed
from margin_calculator import MarginCalculator
from market_data.errors import MarketDataUnavailable
from market_data.service import MarketDataService
from models import OptionLeg, Position, StrategyConfig, TradeValidator, generate_position_id
from portfolio_state import PortfolioState

logger = logging.getLogger(__name__)


def build_strategy_legs(config: StrategyConfig) -> List[OptionLeg]:
    """
    Expand an income strategy into its option legs

    - covered-call: sell call at strike
    - cash-secured-put: sell put at strike
    - collar: sell call at strike, buy put at put_strike
    - custom: the configured legs as given
    """
    if config.type == "custom":
        return list(config.legs)

    if config.type == "cash-secured-put":
        return [OptionLeg(
            symbol=config.symbol, option_type="put", action="sell", quantity=config.quantity,
            strike=config.strike, expiry=config.expiry, premium=config.premium, id="put",
        )]

    legs = [OptionLeg(
        symbol=config.symbol, option_type="call", action="sell", quantity=config.quantity,
        strike=config.strike, expiry=config.expiry, premium=config.premium, id="call",
    )]
    if config.type == "collar":
        legs.append(OptionLeg(
            symbol=config.symbol, option_type="put", action="buy", quantity=config.quantity,
            strike=config.put_strike, expiry=config.expiry, premium=config.put_premium, id="put",
        ))
    return legs


@dataclass
class TradeResult:
    legs: List[OptionLeg]
    margin_requirement: float
    positions: List[Position] = field(default_factory=list)
    simulated: bool = False
    strategy_id: Optional[str] = None


class TradeService:
    """
    Validates, margins and books option trades against portfolio state.

    Args:
        state: Portfolio state receiving the new positions
        quote_source: Gateway for underlying prices and option chains
        margin_limit: Optional hard cap on margin per trade
        dividend_calendar: Ex-dividend schedule for the collar margin factor
    """

    def __init__(
        self,
        state: PortfolioState,
        quote_source: Optional[MarketDataService] = None,
        margin_limit: Optional[float] = None,
        dividend_calendar: Optional[DividendCalendar] = None,
    ):
        self.state = state
        self.quote_source = quote_source
        self.margin_limit = margin_limit
        self.dividend_calendar = dividend_calendar or DividendCalendar()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_legs(legs: List[OptionLeg]) -> None:
        errors = TradeValidator.validate_legs(legs)
        if errors:
            raise ValidationFailed(errors)

    @staticmethod
    def validate_strategy(config: StrategyConfig) -> None:
        errors = TradeValidator.validate_strategy(config)
        if errors:
            raise ValidationFailed(errors)

    def verify_contracts(self, legs: List[OptionLeg]) -> None:
        """Raise if any leg is not listed in its symbol's option chain"""
        if self.quote_source is None:
            return
        chains = {}
        for leg in legs:
            if leg.symbol not in chains:
                try:
                    chains[leg.symbol] = self.quote_source.get_option_chain(leg.symbol)
                except MarketDataUnavailable:
                    raise TradeExecutionError.market_data_unavailable(leg.symbol)
            if chains[leg.symbol].find(leg.option_type, leg.strike, leg.expiry) is None:
                raise TradeExecutionError.option_not_found(leg.symbol, leg.option_type, leg.strike, leg.expiry)

    def resolve_underlying_price(self, symbol: str, underlying_price: Optional[float] = None) -> float:
        if underlying_price is not None:
            return underlying_price
        if self.quote_source is None:
            raise TradeExecutionError.market_data_unavailable(symbol)
        try:
            return self.quote_source.get_quote(symbol).price
        except MarketDataUnavailable:
            raise TradeExecutionError.market_data_unavailable(symbol)

    # ------------------------------------------------------------------
    # Buying power
    # ------------------------------------------------------------------

    def check_buying_power(
        self,
        legs: List[OptionLeg],
        underlying_price: float,
        symbol: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> float:
        """
        Margin requirement for the legs, checked against available cash

        Args:
            legs: Validated option legs
            underlying_price: Current price of the underlying
            symbol: When given, income ETF strategy rules apply
            as_of: Trade date for the ex-dividend lookup (defaults to today)

        Returns:
            Margin requirement in USD

        Raises:
            InsufficientBuyingPower: requirement exceeds cash balance
            MarginExceeded: requirement exceeds the configured limit
        """
        if symbol:
            as_of = as_of or date.today()
            upcoming = self.dividend_calendar.get_next_ex_dividend(symbol, as_of)
            margin = MarginCalculator.calculate_etf_margin(
                symbol,
                legs,
                underlying_price,
                dividend_amount=upcoming[1] if upcoming else 0.0,
                days_to_ex_div=(upcoming[0] - as_of).days if upcoming else 0,
            )
        else:
            margin = MarginCalculator.calculate_margin(legs, underlying_price)

        if self.margin_limit is not None and margin > self.margin_limit:
            raise MarginExceeded(margin, self.margin_limit)
        if margin > self.state.cash_balance:
            raise InsufficientBuyingPower(margin, self.state.cash_balance)
        return margin

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _leg_to_position(leg: OptionLeg, strategy_id: Optional[str]) -> Position:
        return Position(
            id=generate_position_id(),
            symbol=leg.symbol,
            type=leg.option_type,
            position_type="long" if leg.action == "buy" else "short",
            quantity=leg.quantity,
            purchase_price=leg.premium,
            current_price=leg.premium,
            strike=leg.strike,
            expiry=leg.expiry,
            strategy_id=strategy_id,
        )

    def execute_trade(
        self,
        legs: List[OptionLeg],
        underlying_price: Optional[float] = None,
        symbol: Optional[str] = None,
        strategy_id: Optional[str] = None,
        simulate: bool = False,
        as_of: Optional[date] = None,
    ) -> TradeResult:
        """
        Validate, margin-check and book a set of legs

        Buy legs open long positions, sell legs open short positions. When a
        quote source is configured every leg must be listed in its option
        chain. With simulate=True the positions are built but not added to
        state.
        """
        self.validate_legs(legs)
        self.verify_contracts(legs)
        price = self.resolve_underlying_price(symbol or legs[0].symbol, underlying_price)
        margin = self.check_buying_power(legs, price, symbol, as_of=as_of)

        positions = [self._leg_to_position(leg, strategy_id) for leg in legs]
        if not simulate:
            for position in positions:
                self.state.add_position(position)
            logger.info(f"Executed {len(legs)} leg(s), margin ${margin:,.2f}")

        return TradeResult(
            legs=list(legs),
            margin_requirement=margin,
            positions=positions,
            simulated=simulate,
            strategy_id=strategy_id,
        )

    def build_strategy_legs(self, config: StrategyConfig) -> List[OptionLeg]:
        return build_strategy_legs(config)

    def apply_strategy(
        self,
        config: StrategyConfig,
        underlying_price: Optional[float] = None,
        simulate: bool = False,
        as_of: Optional[date] = None,
    ) -> TradeResult:
        """Validate a strategy, margin it with ETF rules and execute its legs"""
        self.validate_strategy(config)
        legs = build_strategy_legs(config)
        strategy_id = config.name or f"{config.symbol}-{config.type}"
        result = self.execute_trade(
            legs,
            underlying_price=underlying_price,
            symbol=config.symbol,
            strategy_id=strategy_id,
            simulate=simulate,
            as_of=as_of,
        )
        logger.info(f"{'Simulated' if simulate else 'Applied'} {config.type} on {config.symbol}")
        return result
