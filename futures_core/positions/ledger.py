"""
Position ledger: authoritative net exposure per symbol.

Fills are folded into position state synchronously. Any value that needs
gateway I/O is resolved before the in-memory record is touched, so an
awaiting caller never observes (or leaves behind) a half-applied update.

One-way mode keeps a single signed amount per symbol and allows reversals
through zero. Hedge mode keeps independent LONG and SHORT tracks that never
cross zero; the mode is fixed for the lifetime of the ledger.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from futures_core.core.audit_logger import AuditEventType, AuditLogger, safe_audit
from futures_core.core.exceptions import MarketDataError, NotFoundError, ValidationError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.order import Order, validate_leverage
from futures_core.models.position import (
    HedgePosition,
    MarginMode,
    Position,
    PositionMode,
    PositionSide,
)
from futures_core.models.risk import LeverageRecommendation, PositionRiskReport, RiskLevel
from futures_core.risk.margin import (
    MarginCalculator,
    classify_liquidation_risk,
    estimate_liquidation_price,
    position_margin_ratio,
)
from futures_core.utils.config import RiskParameters
from futures_core.utils.logger import TradingLogger
from futures_core.utils.numbers import format_decimal

# Amounts closer to zero than this are treated as flat
QUANTITY_EPSILON = 1e-9

# 24h volatility buckets -> leverage ceiling
HIGH_VOLATILITY = 0.05
MODERATE_VOLATILITY = 0.02
STRONG_TREND_VOLATILITY = 0.03
LEVERAGE_CEILINGS = ((HIGH_VOLATILITY, 10), (MODERATE_VOLATILITY, 20))
LOW_VOLATILITY_CEILING = 50
TARGET_RISK_LEVERAGE = {RiskLevel.LOW: 5, RiskLevel.MEDIUM: 10, RiskLevel.HIGH: 20}

BOTH = "BOTH"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FillResult:
    """
    Outcome of folding one fill delta into the ledger.

    Attributes:
        symbol: Trading pair
        order_id: Order the fill belongs to
        delta: Signed quantity consumed by this call (+ buy, - sell)
        price: Fill price
        position: Position (or hedge track) after the fill, None when flat
        realized_pnl: P&L realized by the reducing part of the fill
        reversed: Position side flipped through zero
    """
    symbol: str
    order_id: str
    delta: float
    price: float
    position: Optional[Position]
    realized_pnl: float = 0.0
    reversed: bool = False

    @property
    def closed(self) -> bool:
        return self.position is None


def fold_fill(amount: float, entry_price: float, signed_qty: float, price: float) -> Tuple[float, float, float, bool]:
    """
    Fold a signed fill into a signed position.

    Returns:
        (new_amount, new_entry_price, realized_pnl, reversed)

    Same-direction fills blend the entry price by size; reducing fills keep
    it and realize P&L on the closed quantity; a zero crossing opens the
    overshoot at the fill price.
    """
    if abs(amount) < QUANTITY_EPSILON:
        return signed_qty, price, 0.0, False

    new_amount = amount + signed_qty

    if (amount > 0) == (signed_qty > 0):
        new_entry = (abs(amount) * entry_price + abs(signed_qty) * price) / abs(new_amount)
        return new_amount, new_entry, 0.0, False

    closed_qty = min(abs(signed_qty), abs(amount))
    direction = 1 if amount > 0 else -1
    realized = closed_qty * (price - entry_price) * direction

    if abs(new_amount) < QUANTITY_EPSILON:
        return 0.0, 0.0, realized, False
    if (new_amount > 0) == (amount > 0):
        return new_amount, entry_price, realized, False
    return new_amount, price, realized, True


class PositionLedger:
    """
    Sole writer of position state.

    Example:
        >>> ledger = PositionLedger(gateway)
        >>> ledger.apply_fill(order)  # BUY 1 @ 45000, FILLED
        FillResult(symbol='BTCUSDT', ..., delta=1.0, price=45000.0, ...)
        >>> ledger.get_current_position("BTCUSDT").side
        <PositionSide.LONG: 'LONG'>
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        mode: PositionMode = PositionMode.ONE_WAY,
        risk_params: Optional[RiskParameters] = None,
        audit_logger: Optional[AuditLogger] = None,
        symbols: Iterable[str] = (),
    ):
        self.gateway = gateway
        self.mode = mode
        # Empty means every symbol the exchange reports
        self.symbols = frozenset(s.upper() for s in symbols)
        self.risk_params = risk_params or RiskParameters()
        self.audit_logger = audit_logger
        self.margin = MarginCalculator(gateway, self.risk_params.settlement_asset)

        self._positions: Dict[Tuple[str, str], Position] = {}
        self._consumed: Dict[str, Tuple[float, float]] = {}
        self._realized_pnl: Dict[str, float] = {}
        self._leverage: Dict[str, int] = {}
        self._margin_mode: Dict[str, MarginMode] = {}
        self._lock = threading.Lock()

    # ── Fill folding ──────────────────────────────────────────────

    def _track_key(self, order: Order) -> Tuple[str, str]:
        if self.mode is PositionMode.ONE_WAY:
            return order.symbol, BOTH
        if order.position_side not in (PositionSide.LONG.value, PositionSide.SHORT.value):
            raise ValidationError(
                f"Hedge mode fill for order {order.order_id} requires position side LONG or SHORT",
                field="position_side",
                value=order.position_side,
            )
        return order.symbol, order.position_side

    def _build_position(
        self,
        symbol: str,
        position_side: str,
        amount: float,
        entry_price: float,
        previous: Optional[Position],
    ) -> Position:
        leverage = self.get_leverage(symbol)
        mark_price = previous.mark_price if previous and previous.mark_price else entry_price
        side = PositionSide.LONG if amount > 0 else PositionSide.SHORT
        return Position(
            symbol=symbol,
            amount=amount,
            entry_price=entry_price,
            leverage=leverage,
            margin_mode=self._margin_mode.get(symbol, MarginMode.ISOLATED),
            isolated_margin=abs(amount) * entry_price / leverage,
            unrealized_pnl=amount * (mark_price - entry_price),
            liquidation_price=estimate_liquidation_price(entry_price, leverage, side),
            mark_price=mark_price,
            position_side=position_side,
        )

    @staticmethod
    def _delta_price(order: Order, delta: float, consumed_notional: float) -> float:
        """
        Price of the unconsumed execution.

        The exchange reports a cumulative average price, so the new part is
        priced from the cumulative notional minus what was already applied.
        """
        if order.avg_price:
            price = (order.executed_quantity * order.avg_price - consumed_notional) / delta
            if price > 0:
                return price
            logger.warning(
                f"Inconsistent average price for order {order.order_id}, using {order.avg_price}"
            )
            return order.avg_price
        if not order.price or order.price <= 0:
            raise ValidationError(
                f"Fill for order {order.order_id} has no price", field="avg_price", value=order.price
            )
        return order.price

    def apply_fill(self, order: Order) -> Optional[FillResult]:
        """
        Fold the unconsumed part of an order's execution into the ledger.

        The ledger remembers how much of each order's cumulative executed
        quantity it has already applied, so re-delivering the same order
        state is a no-op.

        Args:
            order: Order record with cumulative executed_quantity

        Returns:
            FillResult, or None when there is nothing new to apply

        Raises:
            ValidationError: No fill price, missing hedge position side, or a
                hedge reduction larger than the track
        """
        with self._lock:
            consumed, consumed_notional = self._consumed.get(order.order_id, (0.0, 0.0))
            delta = order.executed_quantity - consumed
            if delta <= QUANTITY_EPSILON:
                logger.debug(
                    f"Ignoring fill for order {order.order_id}: executed={order.executed_quantity}, "
                    f"already applied={consumed}"
                )
                return None

            price = self._delta_price(order, delta, consumed_notional)

            key = self._track_key(order)
            previous = self._positions.get(key)
            signed_qty = order.side.sign * delta
            amount = previous.amount if previous else 0.0
            entry_price = previous.entry_price if previous else 0.0

            if self.mode is PositionMode.HEDGE:
                track_sign = 1 if key[1] == PositionSide.LONG.value else -1
                if signed_qty * track_sign < 0 and abs(signed_qty) > abs(amount) + QUANTITY_EPSILON:
                    raise ValidationError(
                        f"Order {order.order_id} reduces {key[1]} track for {order.symbol} "
                        f"by {delta}, track holds {abs(amount)}",
                        field="executed_quantity",
                        value=order.executed_quantity,
                    )

            new_amount, new_entry, realized, reversed_ = fold_fill(amount, entry_price, signed_qty, price)
            position = (
                self._build_position(order.symbol, key[1], new_amount, new_entry, previous)
                if new_amount != 0
                else None
            )

            # Commit
            self._consumed[order.order_id] = (order.executed_quantity, consumed_notional + delta * price)
            if position is None:
                self._positions.pop(key, None)
            else:
                self._positions[key] = position
            self._realized_pnl[order.symbol] = self._realized_pnl.get(order.symbol, 0.0) + realized

        result = FillResult(
            symbol=order.symbol,
            order_id=order.order_id,
            delta=signed_qty,
            price=price,
            position=position,
            realized_pnl=realized,
            reversed=reversed_,
        )
        self._record_fill(result)
        return result

    def _record_fill(self, result: FillResult) -> None:
        position = result.position
        data = {
            "symbol": result.symbol,
            "order_id": result.order_id,
            "delta": format_decimal(result.delta),
            "price": format_decimal(result.price),
            "amount": format_decimal(position.amount) if position else "0",
            "entry_price": format_decimal(position.entry_price) if position else "0",
            "realized_pnl": format_decimal(result.realized_pnl),
        }
        if result.reversed:
            action = "POSITION_REVERSED"
            logger.info(f"{result.symbol} position reversed to {position.side.value} {position.amount} @ {position.entry_price}")
        elif result.closed:
            action = "POSITION_CLOSED"
            logger.info(f"{result.symbol} position closed, realized PnL {result.realized_pnl:.4f}")
        else:
            action = "FILL_APPLIED"
            logger.info(f"{result.symbol} fill {result.delta} @ {result.price} -> amount {position.amount}")

        TradingLogger.log_trade(action, data)
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.POSITION_REVERSED if result.reversed else AuditEventType.FILL_APPLIED,
            operation="apply_fill",
            symbol=result.symbol,
            response=data,
        )

    def forget_orders(self, order_ids: Iterable[str]) -> int:
        """
        Drop the applied-quantity memory of ``order_ids``; returns how many were known.

        A fill re-delivered for a forgotten order is applied again in full, so
        only forget orders that will not be reported any more.
        """
        with self._lock:
            forgotten = [self._consumed.pop(str(order_id), None) for order_id in order_ids]
        return sum(1 for entry in forgotten if entry is not None)

    # ── Queries ───────────────────────────────────────────────────

    def get_current_position(self, symbol: str) -> Union[Position, HedgePosition, None]:
        """
        Current exposure for ``symbol``, or None when flat.

        One-way mode returns the Position; hedge mode returns the
        HedgePosition pair (long/short/net amounts).
        """
        if self.mode is PositionMode.HEDGE:
            hedge = self.get_hedge_position(symbol)
            return None if hedge.is_flat else hedge
        return self._positions.get((symbol, BOTH))

    def get_hedge_position(self, symbol: str) -> HedgePosition:
        if self.mode is PositionMode.HEDGE:
            return HedgePosition(
                symbol=symbol,
                long=self._positions.get((symbol, PositionSide.LONG.value)),
                short=self._positions.get((symbol, PositionSide.SHORT.value)),
            )
        position = self._positions.get((symbol, BOTH))
        if position is None:
            return HedgePosition(symbol=symbol)
        if position.side is PositionSide.LONG:
            return HedgePosition(symbol=symbol, long=position)
        return HedgePosition(symbol=symbol, short=position)

    def require_position(self, symbol: str, position_side: Optional[str] = None) -> Position:
        """
        Raises:
            NotFoundError: No open position (or hedge track) for ``symbol``
            ValidationError: Hedge mode without a LONG/SHORT position side
        """
        if self.mode is PositionMode.HEDGE:
            if position_side not in (PositionSide.LONG.value, PositionSide.SHORT.value):
                raise ValidationError(
                    "Hedge mode requires position side LONG or SHORT", field="position_side", value=position_side
                )
            key = (symbol, position_side)
        else:
            key = (symbol, BOTH)
        position = self._positions.get(key)
        if position is None:
            raise NotFoundError(f"No open position for {symbol}", key=symbol)
        return position

    def get_net_amount(self, symbol: str) -> float:
        return self.get_hedge_position(symbol).net_amount

    def get_all_positions(self) -> List[Position]:
        return list(self._positions.values())

    def get_realized_pnl(self, symbol: str) -> float:
        return self._realized_pnl.get(symbol, 0.0)

    def get_leverage(self, symbol: str) -> int:
        return self._leverage.get(symbol, self.risk_params.default_leverage)

    # ── Sizing and risk ───────────────────────────────────────────

    async def calculate_max_position(self, symbol: str) -> float:
        """
        Maximum tradable quantity:
        available balance * leverage * risk factor / last price

        Raises:
            MarketDataError: Balance or price unavailable
        """
        balance = await self.margin.get_available_margin()
        stats = await self.gateway.get_24h_stats(symbol)
        if stats.last_price <= 0:
            raise MarketDataError(f"No price data available for {symbol}", symbol=symbol)
        leverage = self.get_leverage(symbol)
        return balance * leverage * self.risk_params.max_position_fraction / stats.last_price

    async def validate_position_size(self, symbol: str, proposed_size: float) -> bool:
        """True iff current size plus |proposed_size| stays within the maximum."""
        max_size = await self.calculate_max_position(symbol)
        current = self._current_size(symbol)
        return current + abs(proposed_size) <= max_size

    def _current_size(self, symbol: str) -> float:
        return sum(p.quantity for (sym, _), p in self._positions.items() if sym == symbol)

    async def get_position_risk(self, symbol: str, position_side: Optional[str] = None) -> PositionRiskReport:
        """
        Liquidation-risk bucket of a position at the current mid price.

        Raises:
            NotFoundError: No position for ``symbol``
            MarketDataError: No price data for ``symbol``
        """
        self.require_position(symbol, position_side)
        ticker = await self.gateway.get_best_price(symbol)
        # Re-read after the await: a fill may have landed meanwhile
        position = self.require_position(symbol, position_side)

        mark_price = ticker.mid_price
        margin_ratio = position_margin_ratio(position, mark_price)
        return PositionRiskReport(
            symbol=symbol,
            liquidation_risk=classify_liquidation_risk(margin_ratio),
            margin_ratio=format_decimal(margin_ratio),
            unrealized_pnl=format_decimal(position.pnl_at(mark_price)),
            max_loss=format_decimal(position.margin_used),
            leverage=position.leverage,
        )

    async def get_optimal_leverage(
        self, symbol: str, target_risk: RiskLevel = RiskLevel.MEDIUM
    ) -> LeverageRecommendation:
        """
        Leverage ceiling from 24h volatility intersected with the target risk level.
        """
        stats = await self.gateway.get_24h_stats(symbol)
        volatility = stats.volatility

        max_safe = LOW_VOLATILITY_CEILING
        for threshold, ceiling in LEVERAGE_CEILINGS:
            if volatility > threshold:
                max_safe = ceiling
                break

        target_leverage = TARGET_RISK_LEVERAGE[RiskLevel(target_risk)]
        recommended = min(max_safe, target_leverage)
        trend = "strong" if volatility > STRONG_TREND_VOLATILITY else "moderate"

        return LeverageRecommendation(
            recommended_leverage=recommended,
            max_safe_leverage=max_safe,
            confidence=max(0.1, 1 - volatility * 10),
            reasoning=[
                f"24h volatility: {volatility * 100:.2f}%",
                f"Current trend strength: {trend}",
                f"Maximum safe leverage for current volatility: {max_safe}x",
                f"{RiskLevel(target_risk).value} risk target allows up to {target_leverage}x",
            ],
        )

    # ── Mutations through the gateway ─────────────────────────────

    def _rebuild_symbol(self, symbol: str) -> None:
        for key, position in list(self._positions.items()):
            if key[0] == symbol:
                self._positions[key] = self._build_position(
                    symbol, key[1], position.amount, position.entry_price, position
                )

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """
        Raises:
            ValidationError: Leverage outside [1, 125]
            MarketDataError: Exchange rejected the change
        """
        leverage = validate_leverage(leverage)
        try:
            await self.gateway.set_leverage(symbol, leverage)
        except MarketDataError as e:
            safe_audit(
                self.audit_logger,
                event_type=AuditEventType.API_ERROR,
                operation="set_leverage",
                symbol=symbol,
                error={"message": str(e), "code": e.code},
            )
            raise MarketDataError(f"Failed to set leverage for {symbol}: {e}", symbol=symbol, code=e.code) from e

        with self._lock:
            self._leverage[symbol] = leverage
            self._rebuild_symbol(symbol)
        logger.info(f"Leverage set to {leverage}x for {symbol}")
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.LEVERAGE_SET,
            operation="set_leverage",
            symbol=symbol,
            response={"leverage": leverage},
        )

    async def set_margin_type(self, symbol: str, margin_mode: Union[str, MarginMode]) -> None:
        """
        Raises:
            ValidationError: Unknown margin mode
            MarketDataError: Exchange rejected the change
        """
        mode = margin_mode if isinstance(margin_mode, MarginMode) else MarginMode.parse(margin_mode)
        try:
            await self.gateway.set_margin_type(symbol, mode.exchange_value)
        except MarketDataError as e:
            safe_audit(
                self.audit_logger,
                event_type=AuditEventType.API_ERROR,
                operation="set_margin_type",
                symbol=symbol,
                error={"message": str(e), "code": e.code},
            )
            raise MarketDataError(f"Failed to set margin type for {symbol}: {e}", symbol=symbol, code=e.code) from e

        with self._lock:
            self._margin_mode[symbol] = mode
            self._rebuild_symbol(symbol)
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.MARGIN_TYPE_SET,
            operation="set_margin_type",
            symbol=symbol,
            response={"margin_type": mode.exchange_value},
        )

    def update_mark_price(self, symbol: str, mark_price: float) -> List[Position]:
        """Re-mark every track of ``symbol``; returns the updated positions."""
        if mark_price <= 0:
            raise ValidationError(f"Mark price must be > 0, got {mark_price}", field="mark_price", value=mark_price)
        updated = []
        with self._lock:
            for key, position in list(self._positions.items()):
                if key[0] != symbol:
                    continue
                position = replace(
                    position,
                    mark_price=mark_price,
                    unrealized_pnl=position.pnl_at(mark_price),
                    updated_at=datetime.now(timezone.utc),
                )
                self._positions[key] = position
                updated.append(position)
        return updated

    async def sync_from_exchange(self, symbol: Optional[str] = None) -> List[Position]:
        """
        Replace local state with the exchange's position snapshot.

        Records that do not belong to this ledger's mode, or to its configured
        symbols, are skipped.
        """
        snapshot = await self.gateway.get_positions(symbol)

        wanted = {BOTH} if self.mode is PositionMode.ONE_WAY else {PositionSide.LONG.value, PositionSide.SHORT.value}
        accepted = []
        for position in snapshot:
            if position.position_side not in wanted:
                logger.warning(
                    f"Skipping {position.symbol} {position.position_side} record in {self.mode.value} mode"
                )
                continue
            if self.symbols and position.symbol not in self.symbols:
                logger.debug(f"Skipping {position.symbol}: not in configured symbols")
                continue
            accepted.append(position)

        with self._lock:
            for key in list(self._positions):
                if symbol is None or key[0] == symbol:
                    del self._positions[key]
            for position in accepted:
                self._positions[(position.symbol, position.position_side)] = position
                self._leverage[position.symbol] = position.leverage
                self._margin_mode[position.symbol] = position.margin_mode

        logger.info(f"Synced {len(accepted)} position(s) from exchange" + (f" for {symbol}" if symbol else ""))
        safe_audit(
            self.audit_logger,
            event_type=AuditEventType.POSITION_SYNCED,
            operation="sync_from_exchange",
            symbol=symbol,
            response={"positions": [p.to_dict() for p in accepted]},
        )
        return accepted
