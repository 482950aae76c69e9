"""
Order models
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from futures_core.core.exceptions import ValidationError
from futures_core.utils.numbers import format_decimal, parse_decimal, parse_optional_decimal

MIN_LEVERAGE = 1
MAX_LEVERAGE = 125


class OrderType(Enum):
    """Order types"""
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"
    TRAILING_STOP_MARKET = "TRAILING_STOP_MARKET"

    @property
    def requires_stop_price(self) -> bool:
        return self in (
            OrderType.STOP,
            OrderType.STOP_MARKET,
            OrderType.TAKE_PROFIT,
            OrderType.TAKE_PROFIT_MARKET,
        )

    @property
    def requires_price(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.STOP, OrderType.TAKE_PROFIT)


class OrderSide(Enum):
    """Order sides"""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        """+1 for BUY, -1 for SELL."""
        return 1 if self is OrderSide.BUY else -1


class OrderStatus(Enum):
    """Order status"""
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.CANCELED,
            OrderStatus.REJECTED,
            OrderStatus.EXPIRED,
        )


def _utc_from_millis(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def validate_leverage(leverage: Any, field_name: str = "leverage") -> int:
    """
    Validate a leverage multiplier against the exchange range [1, 125].

    Raises:
        ValidationError: Leverage is not an integer in range
    """
    if isinstance(leverage, bool) or not isinstance(leverage, (int, float)):
        raise ValidationError(f"Leverage must be a number, got {leverage!r}", field=field_name, value=leverage)
    if leverage != int(leverage) or not MIN_LEVERAGE <= leverage <= MAX_LEVERAGE:
        raise ValidationError(
            f"Leverage must be an integer between {MIN_LEVERAGE} and {MAX_LEVERAGE}, got {leverage}",
            field=field_name,
            value=leverage,
        )
    return int(leverage)


@dataclass(frozen=True)
class Order:
    """
    Exchange order record.

    Owned by the OrderTracker; read-only input to the PositionLedger.
    ``executed_quantity`` is cumulative across fills and ``avg_price`` is the
    average fill price reported by the exchange.

    Attributes:
        order_id: Exchange order id (string form)
        symbol: Trading pair
        side: BUY or SELL
        order_type: Order type
        quantity: Requested quantity
        executed_quantity: Cumulative filled quantity
        price: Limit price (None for market orders)
        avg_price: Average fill price (None until filled)
        stop_price: Trigger price for stop / take-profit orders
        status: Order status
        position_side: LONG/SHORT in hedge mode, None in one-way mode
        created_at: Creation time (UTC)
        updated_at: Last update time (UTC)
    """

    order_id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: float
    executed_quantity: float = 0.0
    price: Optional[float] = None
    avg_price: Optional[float] = None
    stop_price: Optional[float] = None
    status: OrderStatus = OrderStatus.NEW
    position_side: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValidationError(f"Quantity must be >= 0, got {self.quantity}", field="quantity")
        if self.executed_quantity < 0:
            raise ValidationError(
                f"Executed quantity must be >= 0, got {self.executed_quantity}",
                field="executed_quantity",
            )
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)

    @property
    def fill_price(self) -> Optional[float]:
        """Average fill price, falling back to the limit price."""
        return self.avg_price if self.avg_price else self.price

    @property
    def remaining_quantity(self) -> float:
        return max(self.quantity - self.executed_quantity, 0.0)

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "Order":
        """
        Create Order from a Binance futures order payload.

        Example payload:
            {
                "orderId": 123456789,
                "symbol": "BTCUSDT",
                "status": "PARTIALLY_FILLED",
                "type": "LIMIT",
                "side": "BUY",
                "positionSide": "BOTH",
                "price": "45000",
                "avgPrice": "45000.0",
                "origQty": "1",
                "executedQty": "0.4",
                "stopPrice": "0",
                "time": 1653563095000,
                "updateTime": 1653563095000
            }

        Raises:
            ValidationError: Missing or malformed fields
        """
        try:
            created_at = _utc_from_millis(data.get("time") or data.get("updateTime"))
            position_side = data.get("positionSide")
            return cls(
                order_id=str(data["orderId"]),
                symbol=data["symbol"],
                side=OrderSide(data["side"]),
                order_type=OrderType(data.get("type", "MARKET")),
                quantity=parse_decimal(data.get("origQty", "0"), "origQty"),
                executed_quantity=parse_decimal(data.get("executedQty", "0"), "executedQty"),
                price=parse_optional_decimal(data.get("price"), "price"),
                avg_price=parse_optional_decimal(data.get("avgPrice"), "avgPrice"),
                stop_price=parse_optional_decimal(data.get("stopPrice"), "stopPrice"),
                status=OrderStatus(data.get("status", "NEW")),
                position_side=None if position_side in (None, "BOTH") else position_side,
                created_at=created_at or datetime.now(timezone.utc),
                updated_at=_utc_from_millis(data.get("updateTime")),
            )
        except KeyError as e:
            raise ValidationError(f"Missing required field in order payload: {e}")
        except ValueError as e:
            raise ValidationError(f"Invalid value in order payload: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Export with financial values as decimal strings."""
        return {
            "orderId": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "type": self.order_type.value,
            "status": self.status.value,
            "quantity": format_decimal(self.quantity),
            "executedQuantity": format_decimal(self.executed_quantity),
            "price": format_decimal(self.price) if self.price is not None else None,
            "avgPrice": format_decimal(self.avg_price) if self.avg_price is not None else None,
            "positionSide": self.position_side,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class OrderRequest:
    """
    Candidate order submitted for risk approval and execution.

    Attributes:
        symbol: Trading pair
        side: BUY or SELL
        order_type: Order type
        quantity: Order size in base asset
        price: Limit price (required for LIMIT / STOP / TAKE_PROFIT)
        stop_price: Trigger price (required for stop and take-profit types)
        leverage: Intended leverage, None to use the symbol's setting
        position_side: LONG/SHORT for hedge mode accounts
        reduce_only: Order only reduces an existing position
    """

    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: float
    price: Optional[float] = None
    stop_price: Optional[float] = None
    leverage: Optional[int] = None
    position_side: Optional[str] = None
    reduce_only: bool = False

    def __post_init__(self) -> None:
        """Validate order parameters."""
        if not self.symbol or not isinstance(self.symbol, str):
            raise ValidationError(f"Invalid symbol: {self.symbol!r}", field="symbol", value=self.symbol)
        if self.quantity <= 0:
            raise ValidationError(f"Quantity must be > 0, got {self.quantity}", field="quantity", value=self.quantity)
        if self.price is not None and self.price <= 0:
            raise ValidationError(f"Price must be > 0, got {self.price}", field="price", value=self.price)
        if self.order_type.requires_price and self.price is None:
            raise ValidationError(
                f"{self.order_type.value} order requires a price", field="price"
            )
        if self.order_type.requires_stop_price and self.stop_price is None:
            raise ValidationError(
                f"{self.order_type.value} order requires a stop price", field="stop_price"
            )
        if self.stop_price is not None and self.stop_price <= 0:
            raise ValidationError(
                f"Stop price must be > 0, got {self.stop_price}", field="stop_price", value=self.stop_price
            )
        if self.leverage is not None:
            self.leverage = validate_leverage(self.leverage)
        if self.position_side not in (None, "LONG", "SHORT"):
            raise ValidationError(
                f"Position side must be 'LONG' or 'SHORT', got {self.position_side}",
                field="position_side",
                value=self.position_side,
            )

    def to_params(self) -> Dict[str, Any]:
        """Build Binance new_order parameters."""
        params: Dict[str, Any] = {
            "symbol": self.symbol,
            "side": self.side.value,
            "type": self.order_type.value,
            "quantity": format_decimal(self.quantity),
        }
        if self.price is not None:
            params["price"] = format_decimal(self.price)
            params["timeInForce"] = "GTC"
        if self.stop_price is not None:
            params["stopPrice"] = format_decimal(self.stop_price)
        if self.position_side is not None:
            params["positionSide"] = self.position_side
        elif self.reduce_only:
            params["reduceOnly"] = "true"
        return params
