"""Abstract exchange gateway consumed by the position and risk core.

Defines the capability set for market data, account state and order
primitives. Concrete implementations are BinanceGateway (live trading) and
MockExchange (paper trading / tests).

Every method is a coroutine and every method is fallible: implementations
translate transport and exchange failures into MarketDataError so raw client
exceptions never reach the core.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from futures_core.models.market import AccountBalance, BookTicker, Candle, DailyStats
from futures_core.models.order import Order, OrderRequest
from futures_core.models.position import Position


class ExchangeGateway(ABC):
    """Abstract interface for exchange connectivity."""

    # ── Market data ──────────────────────────────────────────────

    @abstractmethod
    async def get_best_price(self, symbol: str) -> BookTicker:
        """Best bid/ask for one symbol.

        Raises:
            MarketDataError: No price data for the symbol, or I/O failure
        """
        ...

    @abstractmethod
    async def get_all_best_prices(self) -> Dict[str, BookTicker]:
        """Best bid/ask for every listed symbol, keyed by symbol."""
        ...

    @abstractmethod
    async def get_24h_stats(self, symbol: str) -> DailyStats:
        """Rolling 24h statistics for a symbol."""
        ...

    @abstractmethod
    async def get_recent_candles(self, symbol: str, interval: str = "1h", limit: int = 24) -> List[Candle]:
        """Most recent OHLCV candles, oldest first."""
        ...

    # ── Account state ────────────────────────────────────────────

    @abstractmethod
    async def get_account_balances(self) -> List[AccountBalance]:
        """Futures wallet balances."""
        ...

    @abstractmethod
    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        """Exchange-reported open positions (zero-amount records omitted)."""
        ...

    # ── Order primitives ─────────────────────────────────────────

    @abstractmethod
    async def submit_order(self, request: OrderRequest) -> Order:
        """Submit a new order and return the exchange's order record."""
        ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> Order:
        """Cancel an open order and return its final record."""
        ...

    @abstractmethod
    async def get_order(self, symbol: str, order_id: str) -> Order:
        """Query a single order."""
        ...

    @abstractmethod
    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """Open orders, optionally restricted to a symbol."""
        ...

    # ── Account configuration ────────────────────────────────────

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set leverage for a symbol."""
        ...

    @abstractmethod
    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        """Set margin type ('ISOLATED' or 'CROSSED') for a symbol."""
        ...
