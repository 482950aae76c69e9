"""
Data models package
"""

from .market import AccountBalance, BookTicker, Candle, DailyStats
from .order import Order, OrderRequest, OrderSide, OrderStatus, OrderType
from .position import HedgePosition, MarginMode, Position, PositionMode, PositionSide

__all__ = [
    "AccountBalance",
    "BookTicker",
    "Candle",
    "DailyStats",
    "Order",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "HedgePosition",
    "MarginMode",
    "Position",
    "PositionMode",
    "PositionSide",
]
