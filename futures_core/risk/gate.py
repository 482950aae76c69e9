"""
Risk gate: order approval and holistic risk assessment.

Approval (check_order_risk / validate_order_risk) is a hard gate: every
breach raises RiskLimitError and market data failures propagate, because
an order must never be approved under uncertainty. The assessment methods
report soft findings as warnings and recommendations instead, and the
advisory scores (assess_order, validate_risk_levels) turn market data
failures into an elevated 0.7 risk.
"""

import logging
import math
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Optional

from futures_core.core.audit_logger import AuditEventType, AuditLogger, safe_audit
from futures_core.core.exceptions import MarketDataError, RiskLimitError, ValidationError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.order import OrderRequest, OrderType
from futures_core.models.position import Position, PositionMode, PositionSide
from futures_core.models.risk import (
    AggregateRisk,
    LiquidationRisk,
    LiquidationStatus,
    OptimalPositionSize,
    OrderRiskCheck,
    PortfolioRisk,
    PositionRecommendations,
    PositionRiskAssessment,
    RiskAssessment,
    RiskLevel,
    VolatilityMetrics,
    VolatilityTrend,
)
from futures_core.positions.ledger import PositionLedger
from futures_core.risk.calculator import RiskCalculator
from futures_core.risk.margin import (
    HIGH_POSITION_RATIO,
    INITIAL_MARGIN_RATE,
    MAX_MARGIN_RATIO,
    MarginCalculator,
    estimate_liquidation_price,
    position_margin_ratio,
)
from futures_core.risk.volatility import (
    VOLATILITY_THRESHOLD_HIGH,
    VOLATILITY_THRESHOLD_MEDIUM,
    VolatilityAnalyzer,
)
from futures_core.utils.config import RiskParameters
from futures_core.utils.logger import TradingLogger, log_execution_time
from futures_core.utils.numbers import format_decimal

HIGH_RISK_MARGIN_RATIO = 0.8
MEDIUM_RISK_MARGIN_RATIO = 0.6
HIGH_UTILIZATION_WARNING = 0.7
HIGH_RISK_LEVERAGE = 10
MEDIUM_RISK_LEVERAGE = 5

DANGER_LIQUIDATION_PERCENT = 10
WARNING_LIQUIDATION_PERCENT = 20

# Loss estimate for order types without a reference price
DEFAULT_LOSS_PERCENT = 10.0

logger = logging.getLogger(__name__)


def estimate_loss_percent(request: OrderRequest, current_price: float) -> float:
    """
    Worst-case loss of an order as a percentage of its notional.

    MARKET / LIMIT orders lose the gap between order price and current price;
    stop orders lose the gap between trigger and order price.
    """
    order_price = request.price or current_price
    if order_price <= 0:
        raise ValidationError(f"Cannot estimate loss for {request.symbol} at price {order_price}", field="price")
    if request.order_type in (OrderType.MARKET, OrderType.LIMIT):
        loss = abs(request.quantity * (order_price - current_price))
    elif request.stop_price is not None:
        loss = abs(request.quantity * (request.stop_price - order_price))
    else:
        return DEFAULT_LOSS_PERCENT
    return loss / (request.quantity * order_price) * 100


def projected_exposure(positions: List[Position], signed_quantity: float, price: float) -> float:
    """
    Notional of a track after the order.

    Held exposure is valued at entry and new exposure at ``price``. An
    opposite-side order shrinks the held notional pro rata; past zero only
    the reversed remainder counts.
    """
    held = sum(p.amount for p in positions)
    held_notional = sum(p.notional_value for p in positions)
    if held == 0 or held * signed_quantity > 0:
        return held_notional + abs(signed_quantity) * price
    remaining = held + signed_quantity
    if remaining * held >= 0:
        return held_notional * abs(remaining) / abs(held)
    return abs(remaining) * price


def classify_position_risk(margin_ratio: float, volatility: VolatilityMetrics, leverage: int) -> RiskLevel:
    if (
        margin_ratio > HIGH_RISK_MARGIN_RATIO
        or volatility.volatility_score >= VOLATILITY_THRESHOLD_HIGH
        or volatility.trend is VolatilityTrend.INCREASING
        or leverage > HIGH_RISK_LEVERAGE
    ):
        return RiskLevel.HIGH
    if (
        margin_ratio > MEDIUM_RISK_MARGIN_RATIO
        or volatility.volatility_score >= VOLATILITY_THRESHOLD_MEDIUM
        or leverage > MEDIUM_RISK_LEVERAGE
    ):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def analyze_liquidation(
    mark_price: float, liquidation_price: float, returns_std: float
) -> LiquidationRisk:
    distance = abs(mark_price - liquidation_price)
    percentage = distance / mark_price * 100
    if percentage < DANGER_LIQUIDATION_PERCENT:
        status = LiquidationStatus.DANGER
    elif percentage < WARNING_LIQUIDATION_PERCENT:
        status = LiquidationStatus.WARNING
    else:
        status = LiquidationStatus.SAFE
    # Hours for the price to travel the distance at one sigma per hour
    hours = distance / (mark_price * returns_std) if returns_std > 0 else None
    return LiquidationRisk(
        distance_to_liquidation=distance,
        percentage_to_liquidation=percentage,
        status=status,
        estimated_hours_to_liquidation=hours,
    )


class RiskGate:
    """
    Approves candidate orders and assesses position and portfolio risk.

    Example:
        >>> gate = RiskGate(ledger, gateway)
        >>> check = await gate.check_order_risk(request)   # raises RiskLimitError on breach
        >>> report = await gate.analyze_portfolio_risk()
    """

    def __init__(
        self,
        ledger: PositionLedger,
        gateway: ExchangeGateway,
        risk_params: Optional[RiskParameters] = None,
        volatility_analyzer: Optional[VolatilityAnalyzer] = None,
        audit_logger: Optional[AuditLogger] = None,
        risk_calculator: Optional[RiskCalculator] = None,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.risk_params = risk_params or ledger.risk_params
        self.volatility_analyzer = volatility_analyzer or VolatilityAnalyzer(gateway)
        self.risk_calculator = risk_calculator or RiskCalculator(
            gateway,
            volatility_analyzer=self.volatility_analyzer,
            settlement_asset=self.risk_params.settlement_asset,
            default_leverage=self.risk_params.default_leverage,
        )
        self.margin = MarginCalculator(gateway, self.risk_params.settlement_asset)
        self.audit_logger = audit_logger

    # ── Approval gate ─────────────────────────────────────────────

    def _reject(self, request: OrderRequest, reason: str, message: str) -> None:
        logger.warning(f"Order rejected for {request.symbol} ({reason}): {message}")
        TradingLogger.log_trade('ORDER_REJECTED_BY_RISK', {
            'symbol': request.symbol,
            'side': request.side.value,
            'quantity': format_decimal(request.quantity),
            'reason': reason,
            'message': message,
        })
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.RISK_REJECTION,
            operation="check_order_risk",
            symbol=request.symbol,
            order_data=request.to_params(),
            error={"reason": reason, "message": message},
        )
        raise RiskLimitError(message, reason=reason, symbol=request.symbol)

    async def check_order_risk(self, request: OrderRequest) -> OrderRiskCheck:
        """
        Approve or reject a candidate order.

        Raises:
            RiskLimitError: Exposure, leverage, volatility or loss cap breached
            MarketDataError: Stats or balance unavailable
        """
        stats = await self.gateway.get_24h_stats(request.symbol)
        available = await self.margin.get_available_margin()

        params = self.risk_params
        volatility = stats.volatility
        current_price = stats.last_price
        leverage = request.leverage or self.ledger.get_leverage(request.symbol)

        existing = [p for p in self.ledger.get_all_positions() if p.symbol == request.symbol]
        track = existing
        if self.ledger.mode is PositionMode.HEDGE and request.position_side:
            track = [p for p in existing if p.position_side == request.position_side]
        other_tracks = sum(p.notional_value for p in existing if p not in track)
        exposure = other_tracks + projected_exposure(track, request.side.sign * request.quantity, current_price)
        max_exposure = available * leverage * params.max_position_fraction

        if exposure > max_exposure:
            self._reject(
                request,
                RiskLimitError.MARGIN,
                f"Order exceeds maximum position size: exposure {exposure:.2f} "
                f"> allowed {max_exposure:.2f} at {leverage}x",
            )

        if leverage > params.max_leverage:
            self._reject(
                request,
                RiskLimitError.LEVERAGE,
                f"Order leverage {leverage}x exceeds maximum allowed ({params.max_leverage}x)",
            )

        if volatility > params.volatility_threshold:
            self._reject(
                request,
                RiskLimitError.VOLATILITY,
                f"Market volatility {volatility * 100:.2f}% exceeds risk threshold "
                f"{params.volatility_threshold * 100:.2f}%",
            )

        for position in existing:
            if position.leverage > params.max_leverage_multiplier:
                self._reject(
                    request,
                    RiskLimitError.LEVERAGE,
                    f"Current position leverage {position.leverage}x exceeds maximum allowed "
                    f"({params.max_leverage_multiplier}x)",
                )

        loss_percent = estimate_loss_percent(request, current_price)
        if loss_percent > params.max_loss_percent:
            self._reject(
                request,
                RiskLimitError.LOSS,
                f"Potential loss {loss_percent:.2f}% exceeds maximum allowed percentage "
                f"({params.max_loss_percent}%)",
            )

        warnings = []
        if volatility >= VOLATILITY_THRESHOLD_MEDIUM:
            warnings.append(f"Elevated 24h volatility ({volatility * 100:.2f}%)")
        if leverage > HIGH_RISK_LEVERAGE:
            warnings.append(f"High leverage ({leverage}x)")

        check = OrderRiskCheck(
            symbol=request.symbol,
            exposure=exposure,
            max_exposure=max_exposure,
            volatility=volatility,
            estimated_loss_percent=loss_percent,
            warnings=warnings,
        )
        logger.info(
            f"Order approved for {request.symbol}: exposure {exposure:.2f}/{max_exposure:.2f}, "
            f"volatility {volatility:.4f}"
        )
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.RISK_VALIDATION,
            operation="check_order_risk",
            symbol=request.symbol,
            order_data=request.to_params(),
            response={"exposure": exposure, "max_exposure": max_exposure, "warnings": warnings},
        )
        return check

    async def validate_order_risk(self, request: OrderRequest) -> bool:
        """True when the order passes every check; raises otherwise."""
        await self.check_order_risk(request)
        return True

    # ── Advisory scoring ──────────────────────────────────────────

    async def assess_order(self, request: OrderRequest) -> RiskAssessment:
        """
        Advisory score of a candidate order; never raises on market data failures.

        Orders without explicit leverage are scored at the symbol's current
        leverage in the ledger.
        """
        if request.leverage is None:
            request = replace(request, leverage=self.ledger.get_leverage(request.symbol))
        return await self.risk_calculator.assess_order_risk(request)

    async def validate_risk_levels(self) -> RiskAssessment:
        """Advisory score of every open position in the ledger."""
        return await self.risk_calculator.validate_risk_levels(self.ledger.get_all_positions())

    # ── Assessments ───────────────────────────────────────────────

    async def assess_position_risk(
        self, symbol: str, position_side: Optional[str] = None
    ) -> PositionRiskAssessment:
        """
        Raises:
            NotFoundError: No position for ``symbol``
            MarketDataError: Price, balance or candles unavailable
        """
        self.ledger.require_position(symbol, position_side)
        ticker = await self.gateway.get_best_price(symbol)
        balance = await self.margin.get_available_margin()
        volatility = await self.volatility_analyzer.calculate_volatility(symbol)
        position = self.ledger.require_position(symbol, position_side)

        params = self.risk_params
        mark_price = ticker.mid_price
        margin_ratio = position_margin_ratio(position, mark_price)
        risk_level = classify_position_risk(margin_ratio, volatility, position.leverage)

        liquidation_price = position.liquidation_price or estimate_liquidation_price(
            position.entry_price, position.leverage, position.side
        )
        liquidation = analyze_liquidation(mark_price, liquidation_price, volatility.returns_std)

        stop_distance = mark_price * max(params.stop_loss_percentage, volatility.returns_std)
        if position.side is PositionSide.LONG:
            stop_loss = mark_price - stop_distance
            take_profit = mark_price + stop_distance * params.take_profit_ratio
        else:
            stop_loss = mark_price + stop_distance
            take_profit = mark_price - stop_distance * params.take_profit_ratio
        if volatility.volatility_score > 0:
            suggested_leverage = max(1, min(params.max_leverage, math.floor(1 / volatility.volatility_score)))
        else:
            suggested_leverage = params.max_leverage

        warnings = []
        if margin_ratio > HIGH_UTILIZATION_WARNING:
            warnings.append("High margin utilization - consider reducing position size")
        if liquidation.status is LiquidationStatus.DANGER:
            warnings.append("Close to liquidation price - immediate action recommended")
        if volatility.volatility_score >= VOLATILITY_THRESHOLD_HIGH or volatility.trend is VolatilityTrend.INCREASING:
            warnings.append("High market volatility - consider reducing exposure")
        if position.leverage > HIGH_RISK_LEVERAGE:
            warnings.append(f"High leverage ({position.leverage}x) - consider reducing leverage")

        return PositionRiskAssessment(
            symbol=symbol,
            risk_level=risk_level,
            margin_ratio=margin_ratio,
            effective_leverage=position.leverage,
            potential_loss=position.margin_used,
            volatility_score=volatility.volatility_score,
            liquidation_risk=liquidation,
            recommendations=PositionRecommendations(
                max_position_size=balance * params.max_risk_per_trade / stop_distance,
                suggested_leverage=suggested_leverage,
                stop_loss_price=stop_loss,
                take_profit_price=take_profit,
            ),
            warnings=warnings,
        )

    async def _marked_notionals(self, positions: List[Position]) -> Dict[str, List[float]]:
        """Signed notional per symbol at current mid prices, falling back to mark / entry."""
        try:
            tickers = await self.gateway.get_all_best_prices() if positions else {}
        except MarketDataError as e:
            logger.warning(f"Portfolio valued without live prices: {e}")
            tickers = {}

        notionals: Dict[str, List[float]] = defaultdict(list)
        for position in positions:
            ticker = tickers.get(position.symbol)
            price = ticker.mid_price if ticker else (position.mark_price or position.entry_price)
            notionals[position.symbol].append(position.amount * price)
        return notionals

    async def analyze_portfolio_risk(self) -> PortfolioRisk:
        positions = self.ledger.get_all_positions()
        with log_execution_time("portfolio_valuation"):
            notionals = await self._marked_notionals(positions)

        exposure_by_symbol = {symbol: sum(abs(n) for n in values) for symbol, values in notionals.items()}
        total_exposure = sum(exposure_by_symbol.values())
        net_exposure = sum(sum(values) for values in notionals.values())
        if total_exposure == 0:
            return PortfolioRisk(total_exposure=0.0, net_exposure=0.0, concentration_index=0.0, diversification_score=0.0)

        shares = {symbol: exposure / total_exposure for symbol, exposure in exposure_by_symbol.items()}
        concentration_index = sum(share ** 2 for share in shares.values())
        count = len(shares)
        diversification = (1 - concentration_index) / (1 - 1 / count) if count > 1 else 0.0

        high_concentration = []
        if count > 1:
            high_concentration = [symbol for symbol, share in shares.items() if share > HIGH_POSITION_RATIO]

        recommendations = []
        if high_concentration:
            recommendations.append(
                f"High concentration in {', '.join(high_concentration)} - improve portfolio diversification"
            )
        elif count == 1:
            recommendations.append("Portfolio holds a single symbol - consider diversification")
        leveraged = sorted({p.symbol for p in positions if p.leverage > HIGH_RISK_LEVERAGE})
        if leveraged:
            recommendations.append(f"Consider reducing leverage on {', '.join(leveraged)}")

        return PortfolioRisk(
            total_exposure=total_exposure,
            net_exposure=net_exposure,
            concentration_index=concentration_index,
            diversification_score=diversification,
            risk_concentration=shares,
            high_concentration_pairs=high_concentration,
            recommendations=recommendations,
        )

    async def calculate_aggregate_risk(self) -> AggregateRisk:
        """
        Risk score blends margin utilization (against the 0.8 cap) and
        weighted leverage (against the leverage cap), capped at 1.0.
        """
        positions = self.ledger.get_all_positions()
        if not positions:
            return AggregateRisk(total_notional=0.0, weighted_avg_leverage=0.0, margin_utilization=0.0, risk_score=0.0)

        balance = await self.margin.get_available_margin()
        if balance <= 0:
            raise ValidationError(f"Available balance must be > 0, got {balance}", field="available_margin")

        total_notional = sum(p.notional_value for p in positions)
        weighted_leverage = sum(p.notional_value * p.leverage for p in positions) / total_notional
        utilization = total_notional * INITIAL_MARGIN_RATE / balance
        risk_score = min(
            1.0,
            0.5 * utilization / MAX_MARGIN_RATIO + 0.5 * weighted_leverage / self.risk_params.max_leverage,
        )
        return AggregateRisk(
            total_notional=total_notional,
            weighted_avg_leverage=weighted_leverage,
            margin_utilization=utilization,
            risk_score=risk_score,
        )

    async def calculate_optimal_position_size(
        self, symbol: str, account_risk: Optional[float] = None
    ) -> OptimalPositionSize:
        """
        Size a long entry so that hitting the stop loses ``account_risk`` of the balance.

        Stop distance is the larger of the configured stop percentage and one
        standard deviation of recent hourly returns.
        """
        params = self.risk_params
        account_risk = params.max_risk_per_trade if account_risk is None else account_risk
        if not 0 < account_risk <= 1:
            raise ValidationError(
                f"Account risk must be in (0, 1], got {account_risk}", field="account_risk", value=account_risk
            )

        balance = await self.margin.get_available_margin()
        ticker = await self.gateway.get_best_price(symbol)
        volatility = await self.volatility_analyzer.calculate_volatility(symbol)
        if balance <= 0:
            raise ValidationError(f"Available balance must be > 0, got {balance}", field="available_margin")

        price = ticker.mid_price
        risk_amount = balance * account_risk
        stop_distance = price * max(params.stop_loss_percentage, volatility.returns_std)
        size = risk_amount / stop_distance
        leverage = math.ceil(size * price / (balance * params.margin_buffer))

        return OptimalPositionSize(
            max_position_size=size,
            recommended_leverage=max(1, min(params.max_leverage, leverage)),
            stop_loss=price - stop_distance,
            take_profit=price + stop_distance * params.take_profit_ratio,
            risk_amount=risk_amount,
            stop_loss_distance=stop_distance,
        )
