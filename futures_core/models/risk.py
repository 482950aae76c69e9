"""
Risk and margin result models.

All of these are ephemeral values produced by the calculators and the risk
gate; none of them is stored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VolatilityTrend(str, Enum):
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class LiquidationStatus(str, Enum):
    SAFE = "SAFE"
    WARNING = "WARNING"
    DANGER = "DANGER"


@dataclass(frozen=True)
class VolatilityMetrics:
    """
    Volatility summary for a symbol.

    Attributes:
        volatility_score: Coefficient of variation of closes (fraction)
        standard_deviation: Standard deviation of closes (price units)
        returns_std: Standard deviation of close-to-close returns (fraction)
        price_range: (min, max) close over the window
        trend: Short- vs long-window volatility direction
    """
    volatility_score: float
    standard_deviation: float = 0.0
    returns_std: float = 0.0
    price_range: Tuple[float, float] = (0.0, 0.0)
    trend: VolatilityTrend = VolatilityTrend.STABLE


@dataclass
class RiskAssessment:
    """Advisory risk verdict. ``current_risk`` is in [0, 1]; > 0.5 is elevated."""
    max_loss: float
    current_risk: float
    warnings: List[str] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)

    @property
    def is_elevated(self) -> bool:
        return self.current_risk > 0.5


@dataclass(frozen=True)
class MarginRequirement:
    notional: float
    initial_margin: float
    maintenance_margin: float
    margin_ratio: float


@dataclass
class MarginValidationResult:
    is_valid: bool
    margin_ratio: float
    available_margin: float
    required_margin: float
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MarginImpact:
    available_margin: float
    required_margin: float
    margin_ratio: float
    is_within_limits: bool


@dataclass(frozen=True)
class PositionRiskReport:
    """Ledger risk summary; financial values are decimal strings."""
    symbol: str
    liquidation_risk: RiskLevel
    margin_ratio: str
    unrealized_pnl: str
    max_loss: str
    leverage: int


@dataclass
class LeverageRecommendation:
    recommended_leverage: int
    max_safe_leverage: int
    confidence: float
    reasoning: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LiquidationRisk:
    distance_to_liquidation: float
    percentage_to_liquidation: float
    status: LiquidationStatus
    estimated_hours_to_liquidation: Optional[float] = None


@dataclass(frozen=True)
class PositionRecommendations:
    max_position_size: float
    suggested_leverage: int
    stop_loss_price: float
    take_profit_price: float


@dataclass
class PositionRiskAssessment:
    symbol: str
    risk_level: RiskLevel
    margin_ratio: float
    effective_leverage: int
    potential_loss: float
    volatility_score: float
    liquidation_risk: LiquidationRisk
    recommendations: PositionRecommendations
    warnings: List[str] = field(default_factory=list)


@dataclass
class PortfolioRisk:
    total_exposure: float
    net_exposure: float
    concentration_index: float
    diversification_score: float
    risk_concentration: Dict[str, float] = field(default_factory=dict)
    high_concentration_pairs: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AggregateRisk:
    total_notional: float
    weighted_avg_leverage: float
    margin_utilization: float
    risk_score: float


@dataclass(frozen=True)
class OptimalPositionSize:
    max_position_size: float
    recommended_leverage: int
    stop_loss: float
    take_profit: float
    risk_amount: float
    stop_loss_distance: float


@dataclass
class OrderRiskCheck:
    """Result of an approved order; rejections raise RiskLimitError instead."""
    symbol: str
    exposure: float
    max_exposure: float
    volatility: float
    estimated_loss_percent: float
    warnings: List[str] = field(default_factory=list)
