"""
Volatility metrics from recent hourly candles.

volatility_score is the coefficient of variation of closing prices
(std / mean, as a fraction). The trend compares the short and long window
coefficients with a small dead band.
"""

import logging
from typing import Sequence

import numpy as np

from futures_core.core.exceptions import MarketDataError, ValidationError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.risk import VolatilityMetrics, VolatilityTrend

VOLATILITY_THRESHOLD_MEDIUM = 0.03
VOLATILITY_THRESHOLD_HIGH = 0.05

SHORT_WINDOW = 12
LONG_WINDOW = 30
TREND_DEAD_BAND = 0.005

logger = logging.getLogger(__name__)


def coefficient_of_variation(closes: Sequence[float]) -> float:
    """
    Population std / mean of the series.

    Raises:
        ValidationError: Mean price is zero
    """
    prices = np.asarray(closes, dtype=float)
    if prices.size < 2:
        return 0.0
    mean = prices.mean()
    if mean == 0:
        raise ValidationError("Cannot compute volatility with zero average price", field="closes")
    return float(prices.std() / mean)


def returns_std(closes: Sequence[float]) -> float:
    """Standard deviation of close-to-close simple returns."""
    prices = np.asarray(closes, dtype=float)
    if prices.size < 3:
        return 0.0
    if np.any(prices[:-1] == 0):
        raise ValidationError("Cannot compute returns across a zero price", field="closes")
    returns = np.diff(prices) / prices[:-1]
    return float(returns.std())


def volatility_trend(closes: Sequence[float]) -> VolatilityTrend:
    """INCREASING / DECREASING when the short window CV departs from the long window CV."""
    if len(closes) < SHORT_WINDOW:
        return VolatilityTrend.STABLE
    short_cv = coefficient_of_variation(closes[-SHORT_WINDOW:])
    long_cv = coefficient_of_variation(closes[-LONG_WINDOW:])
    difference = short_cv - long_cv
    if abs(difference) < TREND_DEAD_BAND:
        return VolatilityTrend.STABLE
    return VolatilityTrend.INCREASING if difference > 0 else VolatilityTrend.DECREASING


def metrics_from_closes(closes: Sequence[float], period: int = 24) -> VolatilityMetrics:
    """Build VolatilityMetrics from a close series (oldest first)."""
    if len(closes) == 0:
        raise ValidationError("At least one close price is required", field="closes")
    window = list(closes[-period:])
    prices = np.asarray(window, dtype=float)
    return VolatilityMetrics(
        volatility_score=coefficient_of_variation(window),
        standard_deviation=float(prices.std()),
        returns_std=returns_std(window),
        price_range=(float(prices.min()), float(prices.max())),
        trend=volatility_trend(list(closes)),
    )


class VolatilityAnalyzer:
    """
    Computes volatility metrics for a symbol from gateway candles.

    One candle request covers both the scoring window and the trend windows.
    """

    def __init__(self, gateway: ExchangeGateway, interval: str = "1h"):
        self.gateway = gateway
        self.interval = interval

    async def calculate_volatility(self, symbol: str, period_hours: int = 24) -> VolatilityMetrics:
        """
        Raises:
            MarketDataError: Candles unavailable or empty
        """
        candles = await self.gateway.get_recent_candles(
            symbol, interval=self.interval, limit=max(period_hours, LONG_WINDOW)
        )
        if not candles:
            raise MarketDataError(f"No candle data available for {symbol}", symbol=symbol)

        metrics = metrics_from_closes([c.close for c in candles], period=period_hours)
        logger.debug(
            f"{symbol} volatility: score={metrics.volatility_score:.4f}, "
            f"returns_std={metrics.returns_std:.4f}, trend={metrics.trend.value}"
        )
        return metrics
