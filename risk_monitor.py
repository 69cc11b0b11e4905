"""
Risk Monitor - position, strategy and portfolio risk for the dashboard

Greeks here are coarse approximations suitable for monitoring, not a
pricing model. Everything is recomputed on demand from a price snapshot.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
import yfinance as yf

from config import (
    CONTRACT_MULTIPLIER,
    DEFAULT_VOLATILITY,
    MARGIN_RED_PCT,
    PORTFOLIO_DELTA_LIMIT,
)
from dividend_calendar import DividendCalendar
from margin_calculator import MarginCalculator, MarginUtilization
from models import Position, StrategyConfig
from trade_service import build_strategy_legs

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
VIX_BASELINE = 20.0
DEFAULT_HISTORICAL_VOLATILITY = 0.25
MIN_HISTORY = 20

# Margin multiplier per strategy when scaling by volatility
VOLATILITY_MULTIPLIERS = {
    "covered-call": 1.2,
    "cash-secured-put": 1.5,
    "collar": 1.1,
    "custom": 1.4,
}


@dataclass(frozen=True)
class RiskMetrics:
    delta: float
    gamma: float
    theta: float
    vega: float
    early_assignment_prob: float
    margin_requirement: float
    max_loss: float


@dataclass(frozen=True)
class StrategyRisk:
    volatility_impact: float
    dividend_risk: float
    margin_requirement: float
    margin_utilization: MarginUtilization


@dataclass(frozen=True)
class RiskAlert:
    level: str  # warning / critical
    code: str
    message: str


@dataclass
class PortfolioRisk:
    total_delta: float
    total_margin: float
    margin_utilization: MarginUtilization
    positions: Dict[str, RiskMetrics] = field(default_factory=dict)
    alerts: List[RiskAlert] = field(default_factory=list)

    def to_dataframe(self) -> pd.DataFrame:
        rows = [{"position_id": pid, **vars(metrics)} for pid, metrics in self.positions.items()]
        return pd.DataFrame(rows)


# ----------------------------------------------------------------------
# Volatility, dividend and assignment helpers
# ----------------------------------------------------------------------

def historical_volatility(closes: Iterable[float]) -> float:
    """
    Annualized volatility (decimal) from daily closes

    Uses up to a year of log returns, clamped to [10%, 200%]. Falls back
    to 25% with fewer than 20 closes.
    """
    series = pd.Series(list(closes), dtype=float).dropna()
    if len(series) < MIN_HISTORY:
        return DEFAULT_HISTORICAL_VOLATILITY

    returns = np.log(series / series.shift(1)).dropna().tail(TRADING_DAYS_PER_YEAR)
    if returns.empty:
        return DEFAULT_HISTORICAL_VOLATILITY

    annualized = float(returns.std(ddof=0)) * math.sqrt(TRADING_DAYS_PER_YEAR)
    return max(0.1, min(2.0, annualized))


def load_historical_volatility(symbol: str, period: str = "1y") -> float:
    """Historical volatility from Yahoo Finance daily closes"""
    try:
        history = yf.Ticker(symbol).history(period=period)
    except Exception as e:
        logger.warning(f"Failed to load history for {symbol}: {e}")
        return DEFAULT_HISTORICAL_VOLATILITY
    if history is None or history.empty:
        logger.warning(f"Insufficient historical data for {symbol}, using default volatility")
        return DEFAULT_HISTORICAL_VOLATILITY
    return historical_volatility(history["Close"])


def calculate_volatility_impact(strategy_type: str, base_margin: float, volatility: float) -> float:
    """
    Scale a margin figure by volatility relative to a VIX-20 baseline

    Args:
        strategy_type: covered-call / cash-secured-put / collar / custom
        base_margin: Amount to scale
        volatility: Annualized volatility as a decimal (0.30 = 30%)
    """
    vix_factor = (volatility * 100) / VIX_BASELINE
    return base_margin * vix_factor * VOLATILITY_MULTIPLIERS.get(strategy_type, 1.3)


def calculate_dividend_risk(days_to_dividend: Optional[float], days_to_expiry: float) -> float:
    """Risk score 0-10, higher as an ex-dividend date before expiry gets closer"""
    if days_to_dividend is None:
        return 0.0
    if 0 < days_to_dividend < days_to_expiry:
        return min(10.0, 10.0 * (1 - days_to_dividend / 30))
    return 0.0


def estimate_early_assignment_probability(
    option_type: str,
    underlying_price: float,
    strike: float,
    time_to_expiry: float,
    volatility: float,
) -> float:
    """
    Rough probability (0-1) that a short option is assigned early

    Logistic in log-moneyness scaled by volatility over the remaining life;
    at or past expiry it is 1 in the money and 0 otherwise.
    """
    if underlying_price <= 0 or not strike or strike <= 0:
        return 0.0

    moneyness = math.log(underlying_price / strike)
    if option_type == "put":
        moneyness = -moneyness

    if time_to_expiry <= 0 or volatility <= 0:
        return 1.0 if moneyness > 0 else 0.0

    z = moneyness / (volatility * math.sqrt(time_to_expiry))
    return float(1.0 / (1.0 + np.exp(-1.7 * z)))


def time_to_expiry(expiry: Optional[date], as_of: Optional[date] = None) -> float:
    """Years until expiry (0 when already expired or unknown)"""
    if expiry is None:
        return 0.0
    as_of = as_of or date.today()
    return max(0.0, (expiry - as_of).days / 365.0)


class RiskMonitor:
    """
    Risk metrics for positions, income strategies and the whole portfolio

    Args:
        dividend_calendar: Ex-dividend schedule for margin and dividend risk
        default_volatility: Used when no volatility is supplied
    """

    def __init__(
        self,
        dividend_calendar: Optional[DividendCalendar] = None,
        default_volatility: float = DEFAULT_VOLATILITY,
    ):
        self.dividend_calendar = dividend_calendar or DividendCalendar()
        self.default_volatility = default_volatility

    # ------------------------------------------------------------------
    # Greeks
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_delta(position: Position, underlying_price: float) -> float:
        sign = 1 if position.is_long else -1
        if not position.is_option:
            return float(sign)
        if position.type == "call":
            in_the_money = underlying_price > (position.strike or 0)
        else:
            in_the_money = underlying_price < (position.strike or 0)
        return float(sign) if in_the_money else 0.0

    @staticmethod
    def calculate_gamma(position: Position, underlying_price: float, volatility: float, years: float) -> float:
        if not position.is_option or underlying_price <= 0 or years <= 0:
            return 0.0
        distance = abs((position.strike or 0) - underlying_price)
        return volatility * (distance / (underlying_price * math.sqrt(years)))

    @staticmethod
    def calculate_theta(position: Position, volatility: float) -> float:
        if not position.is_option:
            return 0.0
        return -0.05 * volatility * (position.size / 100)

    @staticmethod
    def calculate_vega(position: Position, volatility: float) -> float:
        if not position.is_option:
            return 0.0
        return 0.15 * volatility * (position.size / 100)

    # ------------------------------------------------------------------
    # Position / strategy / portfolio
    # ------------------------------------------------------------------

    def _days_to_ex_div(self, symbol: str, as_of: Optional[date]) -> float:
        days = self.dividend_calendar.days_to_ex_dividend(symbol, as_of)
        return float(days) if days is not None else 0.0

    def calculate_position_risk(
        self,
        position: Position,
        underlying_price: float,
        volatility: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> RiskMetrics:
        """
        Risk metrics for one position at the current underlying price

        Returns:
            RiskMetrics with per-unit Greeks, assignment probability (short
            options only), margin held and worst-case loss
        """
        volatility = volatility or self.default_volatility
        years = time_to_expiry(position.expiry, as_of)

        if position.is_option and not position.is_long:
            assignment = estimate_early_assignment_probability(
                position.type, underlying_price, position.strike, years, volatility
            )
        else:
            assignment = 0.0

        return RiskMetrics(
            delta=self.calculate_delta(position, underlying_price),
            gamma=self.calculate_gamma(position, underlying_price, volatility, years),
            theta=self.calculate_theta(position, volatility),
            vega=self.calculate_vega(position, volatility),
            early_assignment_prob=assignment,
            margin_requirement=MarginCalculator.calculate_position_margin(
                position, underlying_price, self._days_to_ex_div(position.symbol, as_of)
            ),
            max_loss=MarginCalculator.calculate_max_loss(position, position.stop_loss),
        )

    def calculate_strategy_risk(
        self,
        strategy: StrategyConfig,
        underlying_price: float,
        cash_balance: float,
        volatility: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> StrategyRisk:
        """Volatility impact, dividend risk and margin utilization for a strategy"""
        as_of = as_of or date.today()
        volatility = volatility or self.default_volatility

        legs = build_strategy_legs(strategy)
        upcoming = self.dividend_calendar.get_next_ex_dividend(strategy.symbol, as_of)
        days_to_div = (upcoming[0] - as_of).days if upcoming else None
        margin = MarginCalculator.calculate_etf_margin(
            strategy.symbol,
            legs,
            underlying_price,
            dividend_amount=upcoming[1] if upcoming else 0.0,
            days_to_ex_div=days_to_div or 0,
        )

        days_to_expiry = (strategy.expiry - as_of).days if strategy.expiry else 0
        notional = strategy.quantity * CONTRACT_MULTIPLIER * underlying_price

        return StrategyRisk(
            volatility_impact=calculate_volatility_impact(strategy.type, notional, volatility),
            dividend_risk=calculate_dividend_risk(days_to_div, days_to_expiry),
            margin_requirement=margin,
            margin_utilization=MarginCalculator.calculate_margin_utilization(margin, cash_balance),
        )

    def calculate_portfolio_risk(
        self,
        positions: List[Position],
        prices: Dict[str, float],
        cash_balance: float,
        volatility: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> PortfolioRisk:
        """
        Aggregate risk across positions

        Delta is summed in share-equivalents (per-unit delta x size x
        multiplier). Positions with no price are skipped.
        """
        metrics: Dict[str, RiskMetrics] = {}
        total_delta = 0.0
        total_margin = 0.0

        for position in positions:
            price = prices.get(position.symbol) or position.current_price
            if not price:
                logger.warning(f"No price for {position.symbol}, skipping risk for {position.id}")
                continue
            risk = self.calculate_position_risk(position, price, volatility, as_of)
            metrics[position.id] = risk
            total_delta += risk.delta * position.size * position.multiplier
            total_margin += risk.margin_requirement

        utilization = MarginCalculator.calculate_margin_utilization(total_margin, cash_balance)
        return PortfolioRisk(
            total_delta=total_delta,
            total_margin=total_margin,
            margin_utilization=utilization,
            positions=metrics,
            alerts=self.check_thresholds(utilization, total_delta),
        )

    @staticmethod
    def check_thresholds(utilization: MarginUtilization, total_delta: float) -> List[RiskAlert]:
        alerts = []
        if utilization.utilization >= MARGIN_RED_PCT:
            alerts.append(RiskAlert(
                level="critical",
                code="MARGIN_UTILIZATION",
                message=f"Margin utilization at {utilization.utilization:.1f}% of cash",
            ))
        if abs(total_delta) > PORTFOLIO_DELTA_LIMIT:
            alerts.append(RiskAlert(
                level="warning",
                code="PORTFOLIO_DELTA",
                message=f"Portfolio delta {total_delta:,.0f} exceeds {PORTFOLIO_DELTA_LIMIT:,.0f}",
            ))
        for alert in alerts:
            logger.warning(f"Risk alert [{alert.code}]: {alert.message}")
        return alerts
