"""
Order tracker: authoritative order lifecycle state.

Order records are immutable; every mutation swaps in a new record under the
order's own lock, so concurrent updates to one order never lose an update or
expose a torn record, while updates to different orders never contend.
Subscribers are called synchronously after each mutation, each in
isolation: a failing subscriber is logged and skipped.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from futures_core.core.exceptions import NotFoundError, ValidationError
from futures_core.models.order import Order, OrderStatus
from futures_core.utils.numbers import parse_decimal

OrderUpdateCallback = Callable[[Order], None]

logger = logging.getLogger(__name__)


class OrderTracker:
    """
    In-memory order store with subscriber notification.

    Ordering rules:
        - A terminal status (FILLED, CANCELED, REJECTED, EXPIRED) is final;
          later updates to a different status are ignored.
        - Executed quantity never decreases; lower values are ignored.
    Ignored updates do not notify subscribers.
    """

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._subscribers: List[OrderUpdateCallback] = []

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = self._locks[order_id] = threading.Lock()
            return lock

    def _notify(self, order: Order) -> None:
        for callback in list(self._subscribers):
            try:
                callback(order)
            except Exception:
                logger.exception(f"Order update subscriber failed for order {order.order_id}")

    # ── Mutations ─────────────────────────────────────────────────

    def track_order(self, order: Order) -> Order:
        """Insert or replace the record for ``order.order_id``."""
        with self._lock_for(order.order_id):
            self._orders[order.order_id] = order
        logger.debug(f"Tracking order {order.order_id} {order.symbol} {order.status.value}")
        self._notify(order)
        return order

    def update_order_status(self, order_id: Any, status: Union[str, OrderStatus]) -> Order:
        """
        Raises:
            NotFoundError: Unknown order id
            ValidationError: Unknown status value
        """
        order_id = str(order_id)
        try:
            new_status = status if isinstance(status, OrderStatus) else OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}", field="status", value=status)

        with self._lock_for(order_id):
            current = self._get(order_id)
            if current.status.is_terminal and new_status is not current.status:
                logger.debug(
                    f"Ignoring status {new_status.value} for order {order_id}: already {current.status.value}"
                )
                return current
            updated = replace(current, status=new_status, updated_at=datetime.now(timezone.utc))
            self._orders[order_id] = updated

        self._notify(updated)
        return updated

    def update_order_execution(self, order_id: Any, executed_quantity: Union[str, float]) -> Order:
        """
        Set the cumulative executed quantity of an order.

        Raises:
            NotFoundError: Unknown order id
            ValidationError: Quantity negative, non-numeric, or above the
                requested quantity
        """
        order_id = str(order_id)
        executed = parse_decimal(executed_quantity, "executed_quantity")
        if executed < 0:
            raise ValidationError(
                f"Executed quantity must be >= 0, got {executed}", field="executed_quantity", value=executed
            )

        with self._lock_for(order_id):
            current = self._get(order_id)
            if executed > current.quantity:
                raise ValidationError(
                    f"Executed quantity {executed} exceeds order {order_id} quantity {current.quantity}",
                    field="executed_quantity",
                    value=executed,
                )
            if executed < current.executed_quantity:
                logger.debug(
                    f"Ignoring executed quantity {executed} for order {order_id}: "
                    f"already {current.executed_quantity}"
                )
                return current
            updated = replace(current, executed_quantity=executed, updated_at=datetime.now(timezone.utc))
            self._orders[order_id] = updated

        self._notify(updated)
        return updated

    def apply_exchange_update(self, order: Order) -> Order:
        """
        Merge an exchange order snapshot into the tracked record.

        Unknown orders are tracked as-is. Known orders take the snapshot's
        fill state under the same ordering rules as the individual updates.
        """
        with self._lock_for(order.order_id):
            current = self._orders.get(order.order_id)
            if current is None:
                merged = order
            else:
                status = current.status if current.status.is_terminal else order.status
                executed = max(current.executed_quantity, order.executed_quantity)
                if status is current.status and executed == current.executed_quantity and order.avg_price == current.avg_price:
                    return current
                merged = replace(
                    current,
                    status=status,
                    executed_quantity=executed,
                    avg_price=order.avg_price or current.avg_price,
                    updated_at=order.updated_at,
                )
            self._orders[order.order_id] = merged

        self._notify(merged)
        return merged

    def purge_old_history(self, retention_days: int) -> List[str]:
        """
        Purge records created before now - retention_days; returns the purged ids.

        An order whose lock is held by an in-flight update is kept until the
        next purge.
        """
        if retention_days < 0:
            raise ValidationError(
                f"Retention days must be >= 0, got {retention_days}", field="retention_days", value=retention_days
            )
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        purged = []
        with self._registry_lock:
            for order_id, order in list(self._orders.items()):
                if order.created_at >= cutoff:
                    continue
                lock = self._locks.get(order_id)
                if lock is not None and not lock.acquire(blocking=False):
                    logger.debug(f"Order {order_id} is being updated, purge deferred")
                    continue
                del self._orders[order_id]
                if lock is not None:
                    del self._locks[order_id]
                    lock.release()
                purged.append(order_id)
        if purged:
            logger.info(f"Purged {len(purged)} order(s) older than {retention_days} days")
        return purged

    def cleanup_old_history(self, retention_days: int) -> int:
        """Purge records created before now - retention_days; returns the number purged."""
        return len(self.purge_old_history(retention_days))

    # ── Subscribers ───────────────────────────────────────────────

    def subscribe_to_order_updates(self, callback: OrderUpdateCallback) -> None:
        if not callable(callback):
            raise ValidationError("Invalid callback provided", field="callback", value=callback)
        self._subscribers.append(callback)

    def unsubscribe(self, callback: OrderUpdateCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # ── Queries ───────────────────────────────────────────────────

    def _get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", key=order_id)
        return order

    def get_order(self, order_id: Any) -> Order:
        """
        Raises:
            NotFoundError: Unknown order id
        """
        return self._get(str(order_id))

    def has_order(self, order_id: Any) -> bool:
        return str(order_id) in self._orders

    def get_order_history(self, symbol: str) -> List[Order]:
        """All tracked orders for ``symbol``, most recent first."""
        orders = [o for o in list(self._orders.values()) if o.symbol == symbol]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [
            o
            for o in list(self._orders.values())
            if not o.status.is_terminal and (symbol is None or o.symbol == symbol)
        ]
