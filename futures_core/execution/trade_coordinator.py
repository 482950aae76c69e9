"""TradeCoordinator: order flow from risk approval to position update.

Responsibilities:
- Risk approval via RiskGate before any order reaches the exchange
- Order submission and cancellation through the gateway
- Order record tracking in the OrderTracker
- Folding fills into the PositionLedger (placement results and
  user-data-stream updates alike; the ledger ignores re-delivered fills)
"""

import logging
from typing import List, Optional

from futures_core.core.audit_logger import AuditEventType, AuditLogger, safe_audit
from futures_core.core.exceptions import ConfigurationError, MarketDataError
from futures_core.gateway.base import ExchangeGateway
from futures_core.gateway.binance_gateway import BinanceGateway
from futures_core.models.order import Order, OrderRequest
from futures_core.orders.tracker import OrderTracker
from futures_core.positions.ledger import FillResult, PositionLedger
from futures_core.risk.gate import RiskGate
from futures_core.utils.config import ConfigManager


class TradeCoordinator:
    """
    Coordinates the order flow across gate, gateway, tracker and ledger.

    Dependencies:
    - ExchangeGateway: order placement, cancellation and queries
    - RiskGate: approval of new exposure
    - OrderTracker: order lifecycle records
    - PositionLedger: position state from fills
    - AuditLogger: optional compliance trail
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        ledger: PositionLedger,
        tracker: OrderTracker,
        risk_gate: RiskGate,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.tracker = tracker
        self.risk_gate = risk_gate
        self.audit_logger = audit_logger
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        gateway: Optional[ExchangeGateway] = None,
    ) -> "TradeCoordinator":
        """
        Assemble ledger, tracker and gate from loaded configuration.

        Without an explicit gateway a BinanceGateway is built from the API
        credentials; pass a MockExchange for paper trading. An empty
        ``[logging] audit_dir`` disables the audit trail.
        """
        if gateway is None:
            api = config.api_config
            if api is None:
                raise ConfigurationError("API credentials are required to build a live gateway")
            gateway = BinanceGateway(api.api_key, api.api_secret, is_testnet=api.is_testnet)

        audit_dir = config.logging_config.audit_dir
        audit_logger = AuditLogger(audit_dir) if audit_dir else None
        ledger = PositionLedger(
            gateway,
            mode=config.ledger_config.position_mode,
            risk_params=config.risk_parameters,
            audit_logger=audit_logger,
            symbols=config.ledger_config.symbols,
        )
        risk_gate = RiskGate(ledger, gateway, config.risk_parameters, audit_logger=audit_logger)
        return cls(gateway, ledger, OrderTracker(), risk_gate, audit_logger=audit_logger)

    async def place_order(self, request: OrderRequest) -> Order:
        """
        Approve, submit and track an order; fold any immediate fill.

        Reduce-only orders cannot add exposure and skip the approval gate.

        Raises:
            RiskLimitError: Rejected by the risk gate (nothing is submitted)
            MarketDataError: Market data or submission failure
            ValidationError: Invalid leverage or fill data
        """
        self.logger.info(
            f"Placing {request.order_type.value} {request.side.value} {request.quantity} {request.symbol}"
        )

        if request.reduce_only:
            self.logger.info(f"Reduce-only order for {request.symbol}, skipping risk approval")
        else:
            await self.risk_gate.check_order_risk(request)

        if request.leverage is not None and request.leverage != self.ledger.get_leverage(request.symbol):
            await self.ledger.set_leverage(request.symbol, request.leverage)

        try:
            order = await self.gateway.submit_order(request)
        except MarketDataError as e:
            self.logger.error(f"Order submission failed for {request.symbol}: {e}")
            safe_audit(
                self.audit_logger,
                event_type=AuditEventType.API_ERROR,
                operation="place_order",
                symbol=request.symbol,
                order_data=request.to_params(),
                error={"message": str(e), "code": e.code},
            )
            raise

        tracked = self.tracker.apply_exchange_update(order)
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.ORDER_PLACED,
            operation="place_order",
            symbol=request.symbol,
            order_data=request.to_params(),
            response=tracked.to_dict(),
        )
        self.logger.info(f"Order {tracked.order_id} {tracked.status.value} for {tracked.symbol}")

        if tracked.executed_quantity > 0:
            self.ledger.apply_fill(tracked)
        return tracked

    def on_order_update(self, order: Order) -> Optional[FillResult]:
        """
        Handle an order snapshot from the exchange (user data stream or poll).

        Returns:
            FillResult when new execution was folded into the ledger
        """
        tracked = self.tracker.apply_exchange_update(order)
        if tracked.executed_quantity <= 0:
            return None
        return self.ledger.apply_fill(tracked)

    async def cancel_order(self, symbol: str, order_id: str) -> Order:
        """
        Raises:
            MarketDataError: Exchange rejected the cancellation
        """
        order = await self.gateway.cancel_order(symbol, order_id)
        tracked = self.tracker.apply_exchange_update(order)
        if tracked.executed_quantity > 0:
            # Partial fills reported with the cancellation
            self.ledger.apply_fill(tracked)
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.ORDER_CANCELLED,
            operation="cancel_order",
            symbol=symbol,
            response=tracked.to_dict(),
        )
        self.logger.info(f"Order {order_id} cancelled for {symbol}")
        return tracked

    async def sync_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """Pull open orders from the exchange and fold their fills."""
        orders = await self.gateway.get_open_orders(symbol)
        synced = []
        for order in orders:
            synced.append(self.tracker.apply_exchange_update(order))
            if order.executed_quantity > 0:
                self.ledger.apply_fill(synced[-1])
        self.logger.info(f"Synced {len(synced)} open order(s)" + (f" for {symbol}" if symbol else ""))
        return synced

    def cleanup_old_history(self, retention_days: int) -> int:
        """
        Purge old order records together with the ledger's memory of their fills.

        Raises:
            ValidationError: Negative retention
        """
        purged = self.tracker.purge_old_history(retention_days)
        self.ledger.forget_orders(purged)
        return len(purged)
