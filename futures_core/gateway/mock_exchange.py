"""In-memory exchange simulator for paper trading and tests.

Implements the ExchangeGateway ABC with settable market data and account
state. Market orders fill instantly at the best price (ask for buys, bid for
sells, adjusted for slippage); priced orders rest as NEW until filled with
``fill_order`` or cancelled.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from futures_core.core.exceptions import MarketDataError
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.market import AccountBalance, BookTicker, Candle, DailyStats
from futures_core.models.order import Order, OrderRequest, OrderSide, OrderStatus, OrderType
from futures_core.models.position import Position


class MockExchange(ExchangeGateway):
    """In-memory exchange for paper trading and tests.

    Every capability can be made to fail with ``fail_on(capability)``, which
    raises MarketDataError from that method until ``clear_failures`` is called.

    Attributes:
        _tickers: Best bid/ask by symbol
        _stats: 24h statistics by symbol
        _candles: Recent candles by symbol
        _balances: Wallet balances by asset
        _positions: Exchange-reported positions by (symbol, positionSide)
        _orders: Every submitted order by id
        _leverage: Leverage settings by symbol
        _margin_type: Margin type settings by symbol
    """

    def __init__(self, slippage_bps: float = 0.0):
        self._slippage_bps = slippage_bps
        self._tickers: Dict[str, BookTicker] = {}
        self._stats: Dict[str, DailyStats] = {}
        self._candles: Dict[str, List[Candle]] = {}
        self._balances: Dict[str, AccountBalance] = {}
        self._positions: Dict[tuple, Position] = {}
        self._orders: Dict[str, Order] = {}
        self._order_counter = 0
        self._leverage: Dict[str, int] = {}
        self._margin_type: Dict[str, str] = {}
        self._failures: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    # ── Test setup ────────────────────────────────────────────────

    def set_price(self, symbol: str, bid: float, ask: Optional[float] = None) -> None:
        self._tickers[symbol] = BookTicker(symbol=symbol, bid_price=bid, ask_price=ask if ask is not None else bid)

    def remove_price(self, symbol: str) -> None:
        self._tickers.pop(symbol, None)

    def set_24h_stats(
        self,
        symbol: str,
        price_change_percent: float,
        last_price: float,
        volume: float = 0.0,
        high_price: float = 0.0,
        low_price: float = 0.0,
    ) -> None:
        self._stats[symbol] = DailyStats(
            symbol=symbol,
            price_change_percent=price_change_percent,
            last_price=last_price,
            volume=volume,
            high_price=high_price or last_price,
            low_price=low_price or last_price,
        )

    def set_candles(self, symbol: str, closes: List[float]) -> None:
        """Build hourly candles from a close series (oldest first)."""
        start = int(datetime.now(timezone.utc).timestamp()) - len(closes) * 3600
        self._candles[symbol] = [
            Candle(
                open_time=datetime.fromtimestamp(start + i * 3600, tz=timezone.utc),
                open=close,
                high=close,
                low=close,
                close=close,
                volume=0.0,
            )
            for i, close in enumerate(closes)
        ]

    def set_balance(self, asset: str, available_balance: float, balance: Optional[float] = None) -> None:
        self._balances[asset] = AccountBalance(
            asset=asset,
            balance=balance if balance is not None else available_balance,
            available_balance=available_balance,
        )

    def set_position(self, position: Position) -> None:
        self._positions[(position.symbol, position.position_side)] = position

    def clear_position(self, symbol: str, position_side: str = "BOTH") -> None:
        self._positions.pop((symbol, position_side), None)

    def fail_on(self, capability: str, message: str = "Network error") -> None:
        """Make ``capability`` (a gateway method name) raise MarketDataError."""
        self._failures[capability] = message

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check_failure(self, capability: str, symbol: Optional[str] = None) -> None:
        message = self._failures.get(capability)
        if message is not None:
            raise MarketDataError(f"{capability} failed: {message}", symbol=symbol)

    def _next_order_id(self) -> str:
        """Generate sequential order ID."""
        self._order_counter += 1
        return f"MOCK-{self._order_counter}"

    def _apply_slippage(self, price: float, is_buy: bool) -> float:
        """Buys fill slightly higher, sells fill slightly lower."""
        direction = 1 if is_buy else -1
        return price * (1 + self._slippage_bps / 10000 * direction)

    # ── Market data ───────────────────────────────────────────────

    async def get_best_price(self, symbol: str) -> BookTicker:
        self._check_failure("get_best_price", symbol)
        ticker = self._tickers.get(symbol)
        if ticker is None:
            raise MarketDataError(f"No price data available for {symbol}", symbol=symbol)
        return ticker

    async def get_all_best_prices(self) -> Dict[str, BookTicker]:
        self._check_failure("get_all_best_prices")
        return dict(self._tickers)

    async def get_24h_stats(self, symbol: str) -> DailyStats:
        self._check_failure("get_24h_stats", symbol)
        stats = self._stats.get(symbol)
        if stats is None:
            raise MarketDataError(f"No market data found for {symbol}", symbol=symbol)
        return stats

    async def get_recent_candles(self, symbol: str, interval: str = "1h", limit: int = 24) -> List[Candle]:
        self._check_failure("get_recent_candles", symbol)
        return list(self._candles.get(symbol, []))[-limit:]

    # ── Account state ─────────────────────────────────────────────

    async def get_account_balances(self) -> List[AccountBalance]:
        self._check_failure("get_account_balances")
        return list(self._balances.values())

    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        self._check_failure("get_positions", symbol)
        return [p for (sym, _), p in self._positions.items() if symbol is None or sym == symbol]

    # ── Order primitives ──────────────────────────────────────────

    async def submit_order(self, request: OrderRequest) -> Order:
        self._check_failure("submit_order", request.symbol)
        order = Order(
            order_id=self._next_order_id(),
            symbol=request.symbol,
            side=request.side,
            order_type=request.order_type,
            quantity=request.quantity,
            price=request.price,
            stop_price=request.stop_price,
            position_side=request.position_side,
        )

        if request.order_type is OrderType.MARKET:
            ticker = await self.get_best_price(request.symbol)
            is_buy = request.side is OrderSide.BUY
            fill_price = self._apply_slippage(ticker.ask_price if is_buy else ticker.bid_price, is_buy)
            order = replace(
                order,
                executed_quantity=request.quantity,
                avg_price=fill_price,
                status=OrderStatus.FILLED,
            )
            self.logger.info(
                f"Mock fill: {request.side.value} {request.quantity} {request.symbol} @ {fill_price}"
            )

        self._orders[order.order_id] = order
        return order

    def fill_order(self, order_id: str, quantity: float, price: Optional[float] = None) -> Order:
        """Execute ``quantity`` more of a resting order (cumulative)."""
        order = self._orders[order_id]
        executed = min(order.executed_quantity + quantity, order.quantity)
        status = OrderStatus.FILLED if executed >= order.quantity else OrderStatus.PARTIALLY_FILLED
        order = replace(
            order,
            executed_quantity=executed,
            avg_price=price or order.price,
            status=status,
            updated_at=datetime.now(timezone.utc),
        )
        self._orders[order_id] = order
        return order

    async def cancel_order(self, symbol: str, order_id: str) -> Order:
        self._check_failure("cancel_order", symbol)
        order = self._orders.get(order_id)
        if order is None or order.symbol != symbol:
            raise MarketDataError(f"cancel_order failed: Unknown order {order_id}", symbol=symbol, code=-2011)
        if not order.status.is_terminal:
            order = replace(order, status=OrderStatus.CANCELED, updated_at=datetime.now(timezone.utc))
            self._orders[order_id] = order
        return order

    async def get_order(self, symbol: str, order_id: str) -> Order:
        self._check_failure("get_order", symbol)
        order = self._orders.get(order_id)
        if order is None or order.symbol != symbol:
            raise MarketDataError(f"get_order failed: Order does not exist {order_id}", symbol=symbol, code=-2013)
        return order

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        self._check_failure("get_open_orders", symbol)
        return [
            order
            for order in self._orders.values()
            if not order.status.is_terminal and (symbol is None or order.symbol == symbol)
        ]

    # ── Account configuration ─────────────────────────────────────

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self._check_failure("set_leverage", symbol)
        self._leverage[symbol] = leverage

    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        self._check_failure("set_margin_type", symbol)
        self._margin_type[symbol] = margin_type

    def get_leverage(self, symbol: str) -> Optional[int]:
        return self._leverage.get(symbol)

    def get_margin_type(self, symbol: str) -> Optional[str]:
        return self._margin_type.get(symbol)
