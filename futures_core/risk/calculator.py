"""
Advisory risk scoring for positions and candidate orders.

Scores start from a 0.2 baseline and grow with every triggered rule
(high volatility, high leverage, oversized order), capped at 1.0. A score
above 0.5 is elevated. When market data cannot be fetched the result is a
0.7 assessment with a retry recommendation instead of an error.
"""

import logging
from typing import List, Optional, Sequence

from futures_core.core.exceptions import MarketDataError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.order import OrderRequest
from futures_core.models.position import Position
from futures_core.models.risk import RiskAssessment, VolatilityMetrics, VolatilityTrend
from futures_core.risk.volatility import VOLATILITY_THRESHOLD_HIGH, VolatilityAnalyzer

BASELINE_RISK = 0.2
VOLATILITY_RISK_STEP = 0.5
LEVERAGE_RISK_STEP = 0.4
SIZE_RISK_STEP = 0.4
DEGRADED_RISK = 0.7
MAX_RISK = 1.0

HIGH_RISK_LEVERAGE = 10
LARGE_ORDER_BALANCE_FRACTION = 0.2

RETRY_ACTION = "Retry when network conditions improve"

logger = logging.getLogger(__name__)


def is_high_volatility(volatility: VolatilityMetrics) -> bool:
    return (
        volatility.volatility_score >= VOLATILITY_THRESHOLD_HIGH
        or volatility.trend is VolatilityTrend.INCREASING
    )


def score_risk(
    volatility: VolatilityMetrics,
    leverage: int,
    max_loss: float,
    large_position: bool = False,
) -> RiskAssessment:
    """Apply the escalation rules to one exposure."""
    current_risk = BASELINE_RISK
    warnings: List[str] = []
    actions: List[str] = []

    if is_high_volatility(volatility):
        warnings.append("High volatility detected")
        actions.append("Consider reducing position size")
        current_risk += VOLATILITY_RISK_STEP

    if leverage > HIGH_RISK_LEVERAGE:
        warnings.append("High leverage detected")
        actions.append("Reduce leverage")
        current_risk += LEVERAGE_RISK_STEP

    if large_position:
        warnings.append("Large position relative to account balance")
        actions.append("Reduce position size to manage risk exposure")
        current_risk += SIZE_RISK_STEP

    return RiskAssessment(
        max_loss=max_loss,
        current_risk=min(current_risk, MAX_RISK),
        warnings=warnings,
        recommended_actions=actions,
    )


def degraded_assessment(max_loss: float, warning: str) -> RiskAssessment:
    return RiskAssessment(
        max_loss=max_loss,
        current_risk=DEGRADED_RISK,
        warnings=[warning],
        recommended_actions=[RETRY_ACTION],
    )


class RiskCalculator:
    """Advisory risk assessment. Never raises on market data failures."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        volatility_analyzer: Optional[VolatilityAnalyzer] = None,
        settlement_asset: str = "USDT",
        default_leverage: int = 10,
    ):
        self.gateway = gateway
        self.volatility_analyzer = volatility_analyzer or VolatilityAnalyzer(gateway)
        self.settlement_asset = settlement_asset
        self.default_leverage = default_leverage

    async def validate_risk_levels(self, positions: Sequence[Position]) -> RiskAssessment:
        """
        Combined assessment of open positions.

        max_loss is the sum of position margins (notional / leverage);
        current_risk is the highest per-position score.
        """
        if not positions:
            return RiskAssessment(max_loss=0.0, current_risk=0.0)

        assessments = []
        for position in positions:
            max_loss = position.notional_value / position.leverage
            try:
                volatility = await self.volatility_analyzer.calculate_volatility(position.symbol)
            except MarketDataError as e:
                logger.warning(f"Volatility unavailable for {position.symbol}: {e}")
                total_loss = sum(p.notional_value / p.leverage for p in positions)
                return degraded_assessment(
                    total_loss, "Volatility data unavailable, risk assessment may be incomplete"
                )
            assessments.append(score_risk(volatility, position.leverage, max_loss))

        if len(assessments) == 1:
            return assessments[0]

        combined = RiskAssessment(
            max_loss=sum(a.max_loss for a in assessments),
            current_risk=max(a.current_risk for a in assessments),
        )
        for assessment in assessments:
            combined.warnings.extend(w for w in assessment.warnings if w not in combined.warnings)
            combined.recommended_actions.extend(
                a for a in assessment.recommended_actions if a not in combined.recommended_actions
            )
        combined.warnings.append("Multiple positions may increase overall portfolio risk")
        combined.recommended_actions.append("Consider diversifying assets")
        return combined

    async def assess_order_risk(self, request: OrderRequest) -> RiskAssessment:
        """
        Advisory assessment of a candidate order.

        max_loss is the order's margin (notional / leverage). An order above
        20% of the available balance counts as oversized.
        """
        leverage = request.leverage or self.default_leverage
        try:
            price = request.price
            if price is None:
                price = (await self.gateway.get_best_price(request.symbol)).bid_price
            notional = price * request.quantity
            max_loss = notional / leverage

            volatility = await self.volatility_analyzer.calculate_volatility(request.symbol)
            balances = await self.gateway.get_account_balances()
        except MarketDataError as e:
            logger.warning(f"Order risk for {request.symbol} assessed without market data: {e}")
            return degraded_assessment(0.0, "Network issues detected, unable to assess risk accurately")

        available = next(
            (b.available_balance for b in balances if b.asset == self.settlement_asset), 0.0
        )
        large_position = available > 0 and notional > available * LARGE_ORDER_BALANCE_FRACTION
        return score_risk(volatility, leverage, max_loss, large_position=large_position)
