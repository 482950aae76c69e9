"""
Integration tests for TradeCoordinator with MockExchange.

Exercises the full order flow: risk approval, submission, tracking and
position updates from fills.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

from futures_core.core.audit_logger import AuditEventType
from futures_core.core.exceptions import ConfigurationError, MarketDataError, RiskLimitError
from futures_core.execution.trade_coordinator import TradeCoordinator
from futures_core.gateway.mock_exchange import MockExchange
from futures_core.models.order import Order, OrderRequest, OrderSide, OrderStatus, OrderType
from futures_core.models.position import PositionMode
from futures_core.orders.tracker import OrderTracker
from futures_core.positions.ledger import PositionLedger
from futures_core.risk.gate import RiskGate
from futures_core.utils.config import ConfigManager


@pytest.fixture
def exchange():
    exchange = MockExchange()
    exchange.set_price("BTCUSDT", 45000.0)
    exchange.set_24h_stats("BTCUSDT", price_change_percent=1.0, last_price=45000.0)
    exchange.set_candles("BTCUSDT", [45000.0] * 30)
    exchange.set_balance("USDT", 50000.0)
    return exchange


@pytest.fixture
def audit_logger():
    return MagicMock()


@pytest.fixture
def ledger(exchange):
    return PositionLedger(exchange)


@pytest.fixture
def tracker():
    return OrderTracker()


@pytest.fixture
def coordinator(exchange, ledger, tracker, audit_logger):
    gate = RiskGate(ledger, exchange)
    return TradeCoordinator(exchange, ledger, tracker, gate, audit_logger=audit_logger)


def audited_events(audit_logger):
    return [c.kwargs["event_type"] for c in audit_logger.log_event.call_args_list]


class TestPlaceOrder:

    @pytest.mark.asyncio
    async def test_market_order_updates_position(self, coordinator, ledger, tracker, audit_logger):
        order = await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.5)
        )

        assert order.status == OrderStatus.FILLED
        assert tracker.get_order(order.order_id).executed_quantity == 0.5
        position = ledger.get_current_position("BTCUSDT")
        assert position.amount == 0.5
        assert position.entry_price == 45000.0
        assert AuditEventType.ORDER_PLACED in audited_events(audit_logger)

    @pytest.mark.asyncio
    async def test_rejected_order_is_not_submitted(self, coordinator, exchange, tracker, ledger):
        request = OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.01, leverage=25)

        with pytest.raises(RiskLimitError):
            await coordinator.place_order(request)

        assert exchange._orders == {}
        assert tracker.get_open_orders() == []
        assert ledger.get_all_positions() == []

    @pytest.mark.asyncio
    async def test_leverage_is_applied_before_submission(self, coordinator, exchange, ledger):
        await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.5, leverage=5)
        )

        assert exchange.get_leverage("BTCUSDT") == 5
        assert ledger.get_current_position("BTCUSDT").leverage == 5

    @pytest.mark.asyncio
    async def test_submission_failure(self, coordinator, exchange, tracker, audit_logger):
        exchange.fail_on("submit_order", "Service unavailable")

        with pytest.raises(MarketDataError, match="Service unavailable"):
            await coordinator.place_order(OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.1))

        assert AuditEventType.API_ERROR in audited_events(audit_logger)
        assert not tracker.has_order("MOCK-1")

    @pytest.mark.asyncio
    async def test_reduce_only_skips_risk_approval(self, coordinator, exchange, ledger):
        await coordinator.place_order(OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.5))
        exchange.set_24h_stats("BTCUSDT", price_change_percent=12.0, last_price=45000.0)

        await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.SELL, OrderType.MARKET, quantity=0.5, reduce_only=True)
        )

        assert ledger.get_current_position("BTCUSDT") is None

    @pytest.mark.asyncio
    async def test_gate_is_consulted(self, exchange, ledger, tracker):
        gate = MagicMock()
        gate.check_order_risk.side_effect = RiskLimitError("blocked", reason=RiskLimitError.LOSS)
        coordinator = TradeCoordinator(exchange, ledger, tracker, gate)

        with pytest.raises(RiskLimitError, match="blocked"):
            await coordinator.place_order(OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.MARKET, quantity=0.1))


class TestOrderUpdates:

    @pytest.mark.asyncio
    async def test_resting_order_fills_incrementally(self, coordinator, exchange, ledger, tracker):
        order = await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.LIMIT, quantity=1, price=45000.0)
        )
        assert order.status == OrderStatus.NEW
        assert ledger.get_current_position("BTCUSDT") is None

        first = coordinator.on_order_update(exchange.fill_order(order.order_id, 0.4))
        assert first.delta == pytest.approx(0.4)

        second = coordinator.on_order_update(exchange.fill_order(order.order_id, 0.6))
        assert second.delta == pytest.approx(0.6)
        assert second.price == pytest.approx(45000.0)

        assert tracker.get_order(order.order_id).status == OrderStatus.FILLED
        assert ledger.get_current_position("BTCUSDT").amount == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_redelivered_update_is_ignored(self, coordinator, exchange, ledger):
        order = await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.LIMIT, quantity=1, price=45000.0)
        )
        snapshot = exchange.fill_order(order.order_id, 1)

        assert coordinator.on_order_update(snapshot) is not None
        assert coordinator.on_order_update(snapshot) is None
        assert ledger.get_current_position("BTCUSDT").amount == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_unfilled_update(self, coordinator, exchange):
        order = await exchange.submit_order(
            OrderRequest("BTCUSDT", OrderSide.SELL, OrderType.LIMIT, quantity=1, price=46000.0)
        )

        assert coordinator.on_order_update(order) is None


class TestCancelAndSync:

    @pytest.mark.asyncio
    async def test_cancel_after_partial_fill(self, coordinator, exchange, ledger, tracker, audit_logger):
        order = await coordinator.place_order(
            OrderRequest("BTCUSDT", OrderSide.BUY, OrderType.LIMIT, quantity=1, price=45000.0)
        )
        exchange.fill_order(order.order_id, 0.25)

        cancelled = await coordinator.cancel_order("BTCUSDT", order.order_id)

        assert cancelled.status == OrderStatus.CANCELED
        assert tracker.get_open_orders() == []
        assert ledger.get_current_position("BTCUSDT").amount == pytest.approx(0.25)
        assert AuditEventType.ORDER_CANCELLED in audited_events(audit_logger)

    @pytest.mark.asyncio
    async def test_cancel_unknown_order(self, coordinator):
        with pytest.raises(MarketDataError):
            await coordinator.cancel_order("BTCUSDT", "MOCK-404")

    @pytest.mark.asyncio
    async def test_sync_open_orders(self, coordinator, exchange, ledger, tracker):
        order = await exchange.submit_order(
            OrderRequest("BTCUSDT", OrderSide.SELL, OrderType.LIMIT, quantity=2, price=45000.0)
        )
        exchange.fill_order(order.order_id, 0.5)

        synced = await coordinator.sync_open_orders("BTCUSDT")

        assert [o.order_id for o in synced] == [order.order_id]
        assert tracker.get_order(order.order_id).status == OrderStatus.PARTIALLY_FILLED
        assert ledger.get_current_position("BTCUSDT").amount == pytest.approx(-0.5)

    def test_cleanup_forgets_purged_fills(self, coordinator, ledger, tracker):
        old = datetime.now(timezone.utc) - timedelta(days=30)
        coordinator.on_order_update(Order(
            order_id="MOCK-OLD", symbol="BTCUSDT", side=OrderSide.BUY, order_type=OrderType.MARKET,
            quantity=1.0, executed_quantity=1.0, avg_price=45000.0, status=OrderStatus.FILLED,
            created_at=old,
        ))

        assert coordinator.cleanup_old_history(7) == 1
        assert not tracker.has_order("MOCK-OLD")
        assert ledger.forget_orders(["MOCK-OLD"]) == 0
        assert ledger.get_current_position("BTCUSDT").amount == pytest.approx(1.0)


class TestFromConfig:

    def test_builds_components_from_ini(self, tmp_path, exchange):
        (tmp_path / "risk_config.ini").write_text(
            "[risk]\nmax_leverage = 15\n"
            "[ledger]\nposition_mode = HEDGE\nsymbols = BTCUSDT\n"
            f"[logging]\naudit_dir = {tmp_path / 'audit'}\n"
        )
        config = ConfigManager(config_dir=str(tmp_path), require_api=False)

        coordinator = TradeCoordinator.from_config(config, gateway=exchange)

        assert coordinator.gateway is exchange
        assert coordinator.ledger.mode is PositionMode.HEDGE
        assert coordinator.ledger.symbols == {"BTCUSDT"}
        assert coordinator.risk_gate.risk_params.max_leverage == 15
        assert coordinator.audit_logger.log_dir == tmp_path / "audit"
        coordinator.audit_logger.close()

    def test_empty_audit_dir_disables_auditing(self, tmp_path, exchange):
        (tmp_path / "risk_config.ini").write_text("[logging]\naudit_dir =\n")
        config = ConfigManager(config_dir=str(tmp_path), require_api=False)

        coordinator = TradeCoordinator.from_config(config, gateway=exchange)

        assert coordinator.audit_logger is None
        assert coordinator.ledger.audit_logger is None

    def test_live_gateway_needs_credentials(self, tmp_path):
        config = ConfigManager(config_dir=str(tmp_path), require_api=False)

        with pytest.raises(ConfigurationError, match="API credentials are required"):
            TradeCoordinator.from_config(config)
