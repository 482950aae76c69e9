"""
Market data models returned by the exchange gateway
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from futures_core.core.exceptions import MarketDataError, ValidationError
from futures_core.utils.numbers import parse_decimal


@dataclass(frozen=True)
class BookTicker:
    """Best bid/ask for a symbol."""
    symbol: str
    bid_price: float
    ask_price: float

    @property
    def mid_price(self) -> float:
        return (self.bid_price + self.ask_price) / 2

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "BookTicker":
        try:
            return cls(
                symbol=data["symbol"],
                bid_price=parse_decimal(data["bidPrice"], "bidPrice"),
                ask_price=parse_decimal(data["askPrice"], "askPrice"),
            )
        except (KeyError, ValueError, ValidationError) as e:
            raise MarketDataError(f"Malformed book ticker payload: {e}", symbol=data.get("symbol"))


@dataclass(frozen=True)
class DailyStats:
    """Rolling 24h statistics for a symbol."""
    symbol: str
    price_change_percent: float
    last_price: float
    volume: float = 0.0
    high_price: float = 0.0
    low_price: float = 0.0

    @property
    def volatility(self) -> float:
        """Realized 24h volatility as a fraction: |priceChangePercent| / 100."""
        return abs(self.price_change_percent) / 100

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "DailyStats":
        try:
            return cls(
                symbol=data["symbol"],
                price_change_percent=parse_decimal(data["priceChangePercent"], "priceChangePercent"),
                last_price=parse_decimal(data["lastPrice"], "lastPrice"),
                volume=parse_decimal(data.get("volume", "0"), "volume"),
                high_price=parse_decimal(data.get("highPrice", "0"), "highPrice"),
                low_price=parse_decimal(data.get("lowPrice", "0"), "lowPrice"),
            )
        except (KeyError, ValueError, ValidationError) as e:
            raise MarketDataError(f"Malformed 24h stats payload: {e}", symbol=data.get("symbol"))


@dataclass(frozen=True)
class Candle:
    """OHLCV candle."""
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_kline(cls, row: List[Any]) -> "Candle":
        """Create Candle from a Binance kline row ``[openTime, o, h, l, c, v, ...]``."""
        try:
            return cls(
                open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
        except (IndexError, TypeError, ValueError) as e:
            raise MarketDataError(f"Malformed kline row: {e}")


@dataclass(frozen=True)
class AccountBalance:
    """Futures wallet balance for one asset."""
    asset: str
    balance: float
    available_balance: float

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "AccountBalance":
        try:
            return cls(
                asset=data["asset"],
                balance=parse_decimal(data.get("balance", data.get("availableBalance")), "balance"),
                available_balance=parse_decimal(data["availableBalance"], "availableBalance"),
            )
        except (KeyError, ValueError, ValidationError) as e:
            raise MarketDataError(f"Malformed balance payload: {e}")
