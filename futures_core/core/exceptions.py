"""
Custom exceptions for the position and risk core
"""

from typing import Any, Optional


class TradingSystemError(Exception):
    """Base exception for trading system errors"""


class ConfigurationError(TradingSystemError):
    """Configuration related errors"""


class ValidationError(TradingSystemError):
    """Malformed input (missing stop price, non-positive quantity, bad leverage)"""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class MarketDataError(TradingSystemError):
    """Price, stats or balance unavailable, or gateway I/O failure"""

    def __init__(self, message: str, symbol: Optional[str] = None, code: Optional[int] = None):
        super().__init__(message)
        self.symbol = symbol
        self.code = code


class RiskLimitError(TradingSystemError):
    """Well-formed request that breaches a margin, volatility, leverage or loss cap"""

    MARGIN = "MARGIN"
    VOLATILITY = "VOLATILITY"
    LEVERAGE = "LEVERAGE"
    LOSS = "LOSS"

    def __init__(self, message: str, reason: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.symbol = symbol


class NotFoundError(TradingSystemError):
    """Unknown order id, or no position for symbol"""

    def __init__(self, message: str, key: Any = None):
        super().__init__(message)
        self.key = key
