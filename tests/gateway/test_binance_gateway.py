"""
Unit tests for BinanceGateway payload parsing and error translation.

The UMFutures client is replaced by a MagicMock; no network access.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from binance.error import ClientError, ServerError
from requests.exceptions import ConnectionError as RequestsConnectionError

from futures_core.core.exceptions import MarketDataError
from futures_core.gateway.binance_gateway import BinanceGateway, RequestWeightTracker
from futures_core.models.order import OrderRequest, OrderSide, OrderStatus, OrderType
from futures_core.models.position import MarginMode

CLIENT_METHODS = (
    "book_ticker",
    "ticker_24hr_price_change",
    "klines",
    "balance",
    "get_position_risk",
    "new_order",
    "cancel_order",
    "query_order",
    "get_orders",
    "change_leverage",
    "change_margin_type",
)


@pytest.fixture
def client():
    client = MagicMock()
    for name in CLIENT_METHODS:
        # retry_with_backoff logs the wrapped function's name
        getattr(client, name).__name__ = name
    return client


@pytest.fixture
def gateway(client):
    return BinanceGateway(api_key="key", api_secret="secret", client=client, max_retries=0)


def client_error(code, message="error", status=400):
    return ClientError(status_code=status, error_code=code, error_message=message, header={})


class TestMarketData:

    @pytest.mark.asyncio
    async def test_best_price(self, gateway, client):
        client.book_ticker.return_value = {
            "symbol": "BTCUSDT", "bidPrice": "44999.9", "askPrice": "45000.1",
        }

        ticker = await gateway.get_best_price("BTCUSDT")

        assert ticker.bid_price == 44999.9
        assert ticker.mid_price == pytest.approx(45000.0)
        client.book_ticker.assert_called_once_with(symbol="BTCUSDT")

    @pytest.mark.asyncio
    async def test_limit_usage_is_unwrapped_and_tracked(self, gateway, client):
        client.book_ticker.return_value = {
            "data": {"symbol": "BTCUSDT", "bidPrice": "1", "askPrice": "2"},
            "limit_usage": {"x-mbx-used-weight-1m": "42"},
        }

        ticker = await gateway.get_best_price("BTCUSDT")

        assert ticker.ask_price == 2.0
        assert gateway.weight_tracker.current_weight == 42

    @pytest.mark.asyncio
    async def test_waits_for_weight_window_near_limit(self, gateway, client, monkeypatch):
        client.book_ticker.return_value = {"symbol": "BTCUSDT", "bidPrice": "1", "askPrice": "2"}
        gateway.weight_tracker = RequestWeightTracker(weight_limit=100)
        gateway.weight_tracker.update({"x-mbx-used-weight-1m": "95"})
        sleep = AsyncMock()
        monkeypatch.setattr("futures_core.gateway.binance_gateway.asyncio.sleep", sleep)

        await gateway.get_best_price("BTCUSDT")

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(60.0, abs=1.0)

    @pytest.mark.asyncio
    async def test_no_wait_below_limit(self, gateway, client, monkeypatch):
        client.book_ticker.return_value = {"symbol": "BTCUSDT", "bidPrice": "1", "askPrice": "2"}
        sleep = AsyncMock()
        monkeypatch.setattr("futures_core.gateway.binance_gateway.asyncio.sleep", sleep)

        await gateway.get_best_price("BTCUSDT")

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_symbol(self, gateway, client):
        client.book_ticker.side_effect = client_error(-1121, "Invalid symbol.")

        with pytest.raises(MarketDataError, match="No price data available for FOOUSDT") as exc_info:
            await gateway.get_best_price("FOOUSDT")
        assert exc_info.value.code == -1121
        assert exc_info.value.symbol == "FOOUSDT"

    @pytest.mark.asyncio
    async def test_all_best_prices(self, gateway, client):
        client.book_ticker.return_value = [
            {"symbol": "BTCUSDT", "bidPrice": "45000", "askPrice": "45001"},
            {"symbol": "ETHUSDT", "bidPrice": "3000", "askPrice": "3001"},
        ]

        tickers = await gateway.get_all_best_prices()

        assert set(tickers) == {"BTCUSDT", "ETHUSDT"}

    @pytest.mark.asyncio
    async def test_24h_stats(self, gateway, client):
        client.ticker_24hr_price_change.return_value = {
            "symbol": "BTCUSDT", "priceChangePercent": "-2.5", "lastPrice": "45000", "volume": "1000",
        }

        stats = await gateway.get_24h_stats("BTCUSDT")

        assert stats.volatility == pytest.approx(0.025)
        assert stats.last_price == 45000.0

    @pytest.mark.asyncio
    async def test_empty_24h_stats(self, gateway, client):
        client.ticker_24hr_price_change.return_value = {}

        with pytest.raises(MarketDataError, match="No market data found for BTCUSDT"):
            await gateway.get_24h_stats("BTCUSDT")

    @pytest.mark.asyncio
    async def test_candles(self, gateway, client):
        client.klines.return_value = [
            [1653563095000, "45000", "45100", "44900", "45050", "12.5"],
            [1653566695000, "45050", "45200", "45000", "45150", "8.0"],
        ]

        candles = await gateway.get_recent_candles("BTCUSDT", limit=2)

        assert [c.close for c in candles] == [45050.0, 45150.0]
        client.klines.assert_called_once_with(symbol="BTCUSDT", interval="1h", limit=2)

    @pytest.mark.asyncio
    async def test_server_error(self, gateway, client):
        client.klines.side_effect = ServerError(502, "Bad gateway")

        with pytest.raises(MarketDataError, match="server error"):
            await gateway.get_recent_candles("BTCUSDT")

    @pytest.mark.asyncio
    async def test_network_error(self, gateway, client):
        client.balance.side_effect = RequestsConnectionError("connection reset")

        with pytest.raises(MarketDataError, match="network error"):
            await gateway.get_account_balances()


class TestAccountState:

    @pytest.mark.asyncio
    async def test_balances(self, gateway, client):
        client.balance.return_value = [
            {"asset": "USDT", "balance": "12000", "availableBalance": "10000"},
        ]

        balances = await gateway.get_account_balances()

        assert balances[0].asset == "USDT"
        assert balances[0].available_balance == 10000.0

    @pytest.mark.asyncio
    async def test_positions_skip_flat_records(self, gateway, client):
        client.get_position_risk.return_value = [
            {
                "symbol": "BTCUSDT", "positionAmt": "-0.5", "entryPrice": "45000", "leverage": "10",
                "marginType": "cross", "unRealizedProfit": "-50", "liquidationPrice": "49000",
                "markPrice": "45100", "positionSide": "BOTH",
            },
            {"symbol": "ETHUSDT", "positionAmt": "0", "entryPrice": "0", "positionSide": "BOTH"},
        ]

        positions = await gateway.get_positions()

        assert len(positions) == 1
        assert positions[0].amount == -0.5
        assert positions[0].margin_mode == MarginMode.CROSS
        client.get_position_risk.assert_called_once_with()


class TestOrders:

    @pytest.mark.asyncio
    async def test_submit_order(self, gateway, client):
        client.new_order.return_value = {
            "orderId": 123456789, "symbol": "BTCUSDT", "status": "NEW", "type": "LIMIT",
            "side": "BUY", "price": "45000", "avgPrice": "0", "origQty": "0.5", "executedQty": "0",
            "updateTime": 1653563095000,
        }
        request = OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.LIMIT, quantity=0.5, price=45000.0)

        order = await gateway.submit_order(request)

        assert order.order_id == "123456789"
        assert order.status == OrderStatus.NEW
        assert order.avg_price is None
        client.new_order.assert_called_once_with(
            symbol="BTCUSDT", side="BUY", type="LIMIT", quantity="0.5", price="45000", timeInForce="GTC",
        )

    @pytest.mark.asyncio
    async def test_rejected_order(self, gateway, client):
        client.new_order.side_effect = client_error(-2019, "Margin is insufficient.")
        request = OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.5)

        with pytest.raises(MarketDataError, match="Margin is insufficient") as exc_info:
            await gateway.submit_order(request)
        assert exc_info.value.code == -2019

    @pytest.mark.asyncio
    async def test_cancel_order(self, gateway, client):
        client.cancel_order.return_value = {
            "orderId": 42, "symbol": "BTCUSDT", "status": "CANCELED", "type": "LIMIT", "side": "SELL",
            "origQty": "1", "executedQty": "0.25", "price": "46000",
        }

        order = await gateway.cancel_order("BTCUSDT", "42")

        assert order.status == OrderStatus.CANCELED
        assert order.executed_quantity == 0.25
        client.cancel_order.assert_called_once_with(symbol="BTCUSDT", orderId="42")


class TestAccountConfiguration:

    @pytest.mark.asyncio
    async def test_set_leverage(self, gateway, client):
        await gateway.set_leverage("BTCUSDT", 5)

        client.change_leverage.assert_called_once_with(symbol="BTCUSDT", leverage=5)

    @pytest.mark.asyncio
    async def test_margin_type_already_set_is_success(self, gateway, client):
        client.change_margin_type.side_effect = client_error(-4046, "No need to change margin type.")

        await gateway.set_margin_type("BTCUSDT", "ISOLATED")

    @pytest.mark.asyncio
    async def test_margin_type_failure(self, gateway, client):
        client.change_margin_type.side_effect = client_error(-4048, "Margin type cannot be changed")

        with pytest.raises(MarketDataError) as exc_info:
            await gateway.set_margin_type("BTCUSDT", "CROSSED")
        assert exc_info.value.code == -4048


class TestRequestWeightTracker:

    def test_update_is_case_insensitive(self):
        tracker = RequestWeightTracker(weight_limit=100)

        tracker.update({"X-MBX-USED-WEIGHT-1M": "50"})

        assert tracker.current_weight == 50
        assert tracker.check_limit()

    def test_limit_reached(self):
        tracker = RequestWeightTracker(weight_limit=100)

        tracker.update({"x-mbx-used-weight-1m": "95"})

        assert not tracker.check_limit()
        assert tracker.seconds_until_reset() == pytest.approx(60.0, abs=1.0)

    def test_expired_reading_allows_requests(self, monkeypatch):
        tracker = RequestWeightTracker(weight_limit=100)
        tracker.update({"x-mbx-used-weight-1m": "95"})

        monkeypatch.setattr(tracker, "updated_at", tracker.updated_at - 61)

        assert tracker.seconds_until_reset() == 0.0
        assert tracker.check_limit()

    def test_invalid_weight_ignored(self):
        tracker = RequestWeightTracker()

        tracker.update({"x-mbx-used-weight-1m": "n/a"})
        tracker.update(None)

        assert tracker.current_weight == 0
