"""
Margin requirement and margin ratio arithmetic.

Rates are fixed (no exchange tier schedule): initial margin is 10% of
notional and maintenance margin 5%. The only I/O is resolving a missing
order price (best bid) and the settlement-asset balance.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from futures_core.core.exceptions import MarketDataError, ValidationError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.order import OrderRequest
from futures_core.models.position import Position, PositionSide
from futures_core.models.risk import (
    MarginImpact,
    MarginRequirement,
    MarginValidationResult,
    RiskLevel,
)

INITIAL_MARGIN_RATE = 0.10
MAINTENANCE_MARGIN_RATE = 0.05
MAX_MARGIN_RATIO = 0.8
HIGH_POSITION_RATIO = 0.4
HIGH_LEVERAGE_WARNING = 20

# Position margin ratio buckets for liquidation risk
HIGH_LIQUIDATION_RATIO = 0.75
MEDIUM_LIQUIDATION_RATIO = 0.5

logger = logging.getLogger(__name__)


def requirement_for_notional(notional: float) -> MarginRequirement:
    initial_margin = notional * INITIAL_MARGIN_RATE
    maintenance_margin = notional * MAINTENANCE_MARGIN_RATE
    if initial_margin == 0:
        raise ValidationError("Cannot compute margin ratio for zero notional", field="notional", value=notional)
    return MarginRequirement(
        notional=notional,
        initial_margin=initial_margin,
        maintenance_margin=maintenance_margin,
        margin_ratio=maintenance_margin / initial_margin,
    )


def evaluate_margin(
    exposures: Sequence[Tuple[str, float, int]],
    available_margin: float,
) -> MarginValidationResult:
    """
    Validate total margin usage.

    Args:
        exposures: (symbol, notional, leverage) per position
        available_margin: Settlement-asset available balance

    Returns:
        MarginValidationResult, valid iff required / available <= 0.8

    Raises:
        ValidationError: available_margin is zero or negative
    """
    if available_margin <= 0:
        raise ValidationError(
            f"Available margin must be > 0, got {available_margin}",
            field="available_margin",
            value=available_margin,
        )

    total_notional = sum(abs(notional) for _, notional, _ in exposures)
    required_margin = total_notional * INITIAL_MARGIN_RATE
    margin_ratio = required_margin / available_margin
    warnings: List[str] = []

    if margin_ratio > MAX_MARGIN_RATIO:
        warnings.append("High margin utilization detected")

    for symbol, notional, leverage in exposures:
        if leverage > HIGH_LEVERAGE_WARNING:
            warnings.append(f"High leverage ({leverage}x) for {symbol}")
        # Concentration only means something with more than one position
        if len(exposures) > 1 and abs(notional) / total_notional > HIGH_POSITION_RATIO:
            warnings.append(f"High margin usage for {symbol}")

    return MarginValidationResult(
        is_valid=margin_ratio <= MAX_MARGIN_RATIO,
        margin_ratio=margin_ratio,
        available_margin=available_margin,
        required_margin=required_margin,
        warnings=warnings,
    )


def classify_liquidation_risk(margin_ratio: float) -> RiskLevel:
    if margin_ratio > HIGH_LIQUIDATION_RATIO:
        return RiskLevel.HIGH
    if margin_ratio > MEDIUM_LIQUIDATION_RATIO:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def position_margin_ratio(position: Position, mark_price: Optional[float] = None) -> float:
    """
    Maintenance margin / margin balance for one position.

    Margin balance is the position margin plus unrealized P&L at
    ``mark_price`` (or the stored unrealized P&L). An exhausted margin
    balance reports 1.0.
    """
    price = mark_price if mark_price is not None else position.mark_price
    notional = position.quantity * (price or position.entry_price)
    unrealized = position.pnl_at(price) if price is not None else position.unrealized_pnl
    margin_balance = position.margin_used + unrealized
    maintenance = notional * MAINTENANCE_MARGIN_RATE
    if margin_balance <= 0:
        return 1.0
    return min(maintenance / margin_balance, 1.0)


def estimate_liquidation_price(entry_price: float, leverage: int, side: PositionSide) -> float:
    """
    Isolated-margin liquidation estimate under the fixed maintenance rate.

    Raises:
        ValidationError: Zero leverage or entry price
    """
    if leverage <= 0:
        raise ValidationError(f"Leverage must be > 0, got {leverage}", field="leverage", value=leverage)
    if entry_price <= 0:
        raise ValidationError(f"Entry price must be > 0, got {entry_price}", field="entry_price", value=entry_price)
    if side is PositionSide.LONG:
        return max(entry_price * (1 - 1 / leverage + MAINTENANCE_MARGIN_RATE), 0.0)
    return entry_price * (1 + 1 / leverage - MAINTENANCE_MARGIN_RATE)


def position_exposures(positions: Iterable[Position]) -> List[Tuple[str, float, int]]:
    return [(p.symbol, p.notional_value, p.leverage) for p in positions]


class MarginCalculator:
    """
    Margin requirements for orders and open positions.

    Example:
        >>> calc = MarginCalculator(gateway)
        >>> result = await calc.validate_margin_requirements(ledger.get_all_positions())
        >>> result.is_valid
        True
    """

    def __init__(self, gateway: ExchangeGateway, settlement_asset: str = "USDT"):
        self.gateway = gateway
        self.settlement_asset = settlement_asset

    async def resolve_price(self, request: OrderRequest) -> float:
        """Order price, else the current best bid."""
        if request.price is not None:
            return request.price
        ticker = await self.gateway.get_best_price(request.symbol)
        return ticker.bid_price

    async def get_available_margin(self) -> float:
        """
        Raises:
            MarketDataError: No settlement-asset balance
        """
        balances = await self.gateway.get_account_balances()
        for balance in balances:
            if balance.asset == self.settlement_asset:
                return balance.available_balance
        raise MarketDataError(f"No {self.settlement_asset} balance found")

    async def calculate_required_margin(self, request: OrderRequest) -> MarginRequirement:
        """
        Raises:
            MarketDataError: No price data for the order's symbol
        """
        price = await self.resolve_price(request)
        return requirement_for_notional(price * request.quantity)

    async def validate_margin_requirements(
        self,
        positions: Sequence[Position],
        available_margin: Optional[float] = None,
    ) -> MarginValidationResult:
        if available_margin is None:
            available_margin = await self.get_available_margin()
        result = evaluate_margin(position_exposures(positions), available_margin)
        if not result.is_valid:
            logger.warning(
                f"Margin ratio {result.margin_ratio:.4f} exceeds {MAX_MARGIN_RATIO} "
                f"(required={result.required_margin}, available={available_margin})"
            )
        return result

    async def calculate_margin_impact(
        self,
        request: OrderRequest,
        positions: Sequence[Position],
    ) -> MarginImpact:
        """Margin ratio after adding ``request`` to the current positions."""
        price = await self.resolve_price(request)
        available_margin = await self.get_available_margin()

        order_margin = requirement_for_notional(price * request.quantity)
        current = evaluate_margin(position_exposures(positions), available_margin)

        total_required = current.required_margin + order_margin.initial_margin
        margin_ratio = total_required / available_margin
        return MarginImpact(
            available_margin=available_margin,
            required_margin=total_required,
            margin_ratio=margin_ratio,
            is_within_limits=margin_ratio <= MAX_MARGIN_RATIO,
        )
