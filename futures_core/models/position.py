"""
Position models
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from futures_core.core.exceptions import ValidationError
from futures_core.models.order import validate_leverage
from futures_core.utils.numbers import format_decimal, parse_decimal, parse_optional_decimal


class PositionSide(str, Enum):
    """Direction of a position"""
    LONG = "LONG"
    SHORT = "SHORT"


class PositionMode(Enum):
    """
    Account position mode.

    ONE_WAY keeps a single signed amount per symbol; HEDGE keeps independent
    LONG and SHORT tracks whose bases never merge.
    """
    ONE_WAY = "ONE_WAY"
    HEDGE = "HEDGE"


class MarginMode(Enum):
    """Margin mode"""
    ISOLATED = "isolated"
    CROSS = "cross"

    @classmethod
    def parse(cls, value: str) -> "MarginMode":
        """Accept exchange spellings (ISOLATED, CROSSED, cross)."""
        normalized = (value or "").strip().lower()
        if normalized in ("isolated",):
            return cls.ISOLATED
        if normalized in ("cross", "crossed"):
            return cls.CROSS
        raise ValidationError(f"Margin mode must be ISOLATED or CROSS, got {value!r}", field="margin_mode", value=value)

    @property
    def exchange_value(self) -> str:
        return "ISOLATED" if self is MarginMode.ISOLATED else "CROSSED"


@dataclass(frozen=True)
class Position:
    """
    Open futures position (immutable snapshot).

    Attributes:
        symbol: Trading pair
        amount: Signed net amount (positive=long, negative=short)
        entry_price: Volume-weighted average entry price
        leverage: Leverage multiplier
        margin_mode: Isolated or cross margin
        isolated_margin: Margin assigned to the position (None when unknown)
        unrealized_pnl: Current profit/loss at mark price
        liquidation_price: Liquidation price (None when unknown)
        mark_price: Last mark price used for unrealized P&L
        position_side: 'BOTH' in one-way mode, 'LONG'/'SHORT' hedge tracks
        updated_at: Last change time (UTC)
    """

    symbol: str
    amount: float
    entry_price: float
    leverage: int
    margin_mode: MarginMode = MarginMode.ISOLATED
    isolated_margin: Optional[float] = None
    unrealized_pnl: float = 0.0
    liquidation_price: Optional[float] = None
    mark_price: Optional[float] = None
    position_side: str = "BOTH"
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        """Validate position parameters."""
        if self.amount == 0:
            raise ValidationError(f"Position amount must be non-zero for {self.symbol}", field="amount")
        if self.entry_price <= 0:
            raise ValidationError(f"Entry price must be > 0, got {self.entry_price}", field="entry_price")
        validate_leverage(self.leverage)
        if self.position_side not in ("BOTH", "LONG", "SHORT"):
            raise ValidationError(
                f"Position side must be BOTH, LONG or SHORT, got {self.position_side}",
                field="position_side",
            )

    @property
    def side(self) -> PositionSide:
        return PositionSide.LONG if self.amount > 0 else PositionSide.SHORT

    @property
    def quantity(self) -> float:
        """Absolute position size."""
        return abs(self.amount)

    @property
    def notional_value(self) -> float:
        """Position value at entry (quantity * entry_price)."""
        return self.quantity * self.entry_price

    @property
    def margin_used(self) -> float:
        """Isolated margin when known, else notional / leverage."""
        if self.isolated_margin:
            return self.isolated_margin
        return self.notional_value / self.leverage

    def pnl_at(self, price: float) -> float:
        """Unrealized P&L if marked at ``price``."""
        return self.amount * (price - self.entry_price)

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> Optional["Position"]:
        """
        Create Position from a Binance positionRisk record.

        Returns None when positionAmt is zero (no position).

        Raises:
            ValidationError: Missing or malformed fields
        """
        try:
            amount = parse_decimal(data["positionAmt"], "positionAmt")
            if amount == 0:
                return None
            mark_price = parse_optional_decimal(data.get("markPrice"), "markPrice")
            return cls(
                symbol=data["symbol"],
                amount=amount,
                entry_price=parse_decimal(data["entryPrice"], "entryPrice"),
                leverage=int(parse_decimal(data.get("leverage", 1), "leverage")),
                margin_mode=MarginMode.parse(data.get("marginType", "isolated")),
                isolated_margin=parse_optional_decimal(data.get("isolatedMargin"), "isolatedMargin"),
                unrealized_pnl=parse_decimal(data.get("unRealizedProfit", "0"), "unRealizedProfit"),
                liquidation_price=parse_optional_decimal(data.get("liquidationPrice"), "liquidationPrice"),
                mark_price=mark_price,
                position_side=data.get("positionSide", "BOTH"),
            )
        except KeyError as e:
            raise ValidationError(f"Missing required field in position payload: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Export with financial values as decimal strings."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "positionAmount": format_decimal(self.amount),
            "entryPrice": format_decimal(self.entry_price),
            "leverage": self.leverage,
            "marginType": self.margin_mode.value,
            "isolatedMargin": format_decimal(self.isolated_margin or 0.0),
            "unrealizedProfit": format_decimal(self.unrealized_pnl),
            "liquidationPrice": format_decimal(self.liquidation_price or 0.0),
            "positionSide": self.position_side,
        }


@dataclass(frozen=True)
class HedgePosition:
    """
    Hedge-mode view of one symbol: independent LONG and SHORT tracks.

    The short track is stored with a negative amount, so
    ``net_amount = long_amount + short_amount``.
    """

    symbol: str
    long: Optional[Position] = None
    short: Optional[Position] = None

    @property
    def long_amount(self) -> float:
        return self.long.amount if self.long else 0.0

    @property
    def short_amount(self) -> float:
        return self.short.amount if self.short else 0.0

    @property
    def net_amount(self) -> float:
        return self.long_amount + self.short_amount

    @property
    def is_flat(self) -> bool:
        return self.long is None and self.short is None
