"""
Trade execution failures surfaced to the user as short actionable messages
"""
from datetime import datetime
from typing import Any, Dict, List, Optional


class TradeExecutionError(Exception):
    """Base class for anything that blocks a trade from executing."""

    code = "TRADE_EXECUTION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_user_message(self) -> str:
        """Convert error to user-friendly message"""
        return _USER_MESSAGES.get(self.code, "Trade execution failed: {message}").format(message=str(self))

    @classmethod
    def market_data_unavailable(cls, symbol: str) -> "TradeExecutionError":
        return cls(f"Market data unavailable for {symbol}", "MARKET_DATA_UNAVAILABLE", {"symbol": symbol})

    @classmethod
    def option_not_found(cls, symbol: str, option_type: str, strike: float, expiry) -> "TradeExecutionError":
        return cls(
            f"Option not found: {symbol} {option_type} {strike} {expiry}",
            "OPTION_NOT_FOUND",
            {"symbol": symbol, "option_type": option_type, "strike": strike, "expiry": str(expiry)},
        )


class ValidationFailed(TradeExecutionError):
    """Malformed legs or strategy parameters. Lists every violation at once."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: List[str]):
        super().__init__(f"Validation failed: {', '.join(errors)}", details={"errors": list(errors)})
        self.errors = list(errors)


class InsufficientBuyingPower(TradeExecutionError):
    """Margin requirement exceeds available cash."""

    code = "INSUFFICIENT_FUNDS"

    def __init__(self, required: float, available: float):
        super().__init__(
            f"insufficient buying power: required ${required:,.2f}, available ${available:,.2f}",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available


class MarginExceeded(TradeExecutionError):
    """Margin requirement exceeds a configured limit."""

    code = "MARGIN_REQUIREMENT_EXCEEDED"

    def __init__(self, margin: float, limit: float):
        super().__init__(
            f"Margin requirement ${margin:,.2f} exceeds limit ${limit:,.2f}",
            details={"margin": margin, "limit": limit},
        )
        self.margin = margin
        self.limit = limit


_USER_MESSAGES = {
    "INSUFFICIENT_FUNDS": "{message}. Add funds or reduce position size.",
    "INVALID_STRATEGY": "Invalid strategy configuration. Please check your parameters and try again.",
    "MARKET_DATA_UNAVAILABLE": "Market data is currently unavailable. Please try again in a moment.",
    "MARGIN_REQUIREMENT_EXCEEDED": "This trade would exceed your margin requirements. Please reduce position size.",
    "OPTION_NOT_FOUND": "The requested option contract is not available for trading.",
    "VALIDATION_FAILED": "Trade rejected. {message}",
}
