"""Tests for volatility metrics."""

import pytest

from futures_core.core.exceptions import MarketDataError, ValidationError
from futures_core.gateway.mock_exchange import MockExchange
from futures_core.models.risk import VolatilityTrend
from futures_core.risk.volatility import (
    VolatilityAnalyzer,
    coefficient_of_variation,
    metrics_from_closes,
    returns_std,
    volatility_trend,
)


class TestStatistics:

    def test_flat_series_has_zero_volatility(self):
        assert coefficient_of_variation([100.0] * 24) == 0.0
        assert returns_std([100.0] * 24) == 0.0

    def test_coefficient_of_variation(self):
        # mean 100, population std 10
        assert coefficient_of_variation([90.0, 110.0]) == pytest.approx(0.1)

    def test_zero_mean_rejected(self):
        with pytest.raises(ValidationError):
            coefficient_of_variation([0.0, 0.0])

    def test_returns_std(self):
        # returns +10%, -10%
        assert returns_std([100.0, 110.0, 99.0]) == pytest.approx(0.1)

    def test_trend_increasing_when_recent_window_is_wilder(self):
        closes = [100.0] * 18 + [100.0, 110.0] * 6
        assert volatility_trend(closes) == VolatilityTrend.INCREASING

    def test_trend_decreasing_when_recent_window_is_calm(self):
        closes = [100.0, 110.0] * 9 + [105.0] * 12
        assert volatility_trend(closes) == VolatilityTrend.DECREASING

    def test_trend_stable_within_dead_band(self):
        closes = [100.0, 100.2] * 15
        assert volatility_trend(closes) == VolatilityTrend.STABLE

    def test_metrics_price_range(self):
        metrics = metrics_from_closes([100.0, 105.0, 95.0])

        assert metrics.price_range == (95.0, 105.0)
        assert metrics.standard_deviation > 0


class TestVolatilityAnalyzer:

    @pytest.mark.asyncio
    async def test_calculate_volatility_from_candles(self):
        exchange = MockExchange()
        exchange.set_candles("BTCUSDT", [45000.0] * 30)

        metrics = await VolatilityAnalyzer(exchange).calculate_volatility("BTCUSDT")

        assert metrics.volatility_score == 0.0
        assert metrics.trend == VolatilityTrend.STABLE

    @pytest.mark.asyncio
    async def test_no_candles_raises_market_data_error(self):
        with pytest.raises(MarketDataError, match="BTCUSDT"):
            await VolatilityAnalyzer(MockExchange()).calculate_volatility("BTCUSDT")
