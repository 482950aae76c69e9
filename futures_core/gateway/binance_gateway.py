"""
Binance USDⓈ-M Futures gateway with rate limit tracking.

Wraps the blocking ``binance.um_futures.UMFutures`` client: every call runs
in a worker thread (``asyncio.to_thread``) through ``retry_with_backoff``,
and every client / transport failure is translated into MarketDataError.
Calls wait for the weight window to reset while the last reported usage is
at 90% of the limit or above.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from binance.error import ClientError, ServerError
from binance.um_futures import UMFutures
from requests.exceptions import RequestException

from futures_core.core.exceptions import MarketDataError
from futures_core.core.retry import retry_with_backoff
from futures_core.gateway.base import ExchangeGateway
from futures_core.models.market import AccountBalance, BookTicker, Candle, DailyStats
from futures_core.models.order import Order, OrderRequest
from futures_core.models.position import Position

INVALID_SYMBOL_CODE = -1121
NO_NEED_TO_CHANGE_MARGIN_TYPE = -4046
WEIGHT_WINDOW_SECONDS = 60.0


class RequestWeightTracker:
    """
    Tracks API request weight to prevent rate limit violations.

    Binance reports weight usage when the client is initialized with
    show_limit_usage=True. The reported weight covers a one minute window,
    so a reading older than WEIGHT_WINDOW_SECONDS no longer applies.
    """

    def __init__(self, weight_limit: int = 2400):
        self.current_weight = 0
        self.weight_limit = weight_limit  # Binance limit: 2400 requests/minute
        self.updated_at: Optional[float] = None
        self.logger = logging.getLogger(__name__)

    def update(self, limit_usage: Optional[Dict[str, Any]] = None) -> None:
        """
        Update weight tracking from the connector's limit usage mapping.

        Args:
            limit_usage: e.g. {"x-mbx-used-weight-1m": "15"}
        """
        if not limit_usage:
            return

        weight_str = None
        for key, value in limit_usage.items():
            if key.lower() == "x-mbx-used-weight-1m":
                weight_str = value
                break
        if weight_str is None:
            return

        try:
            self.current_weight = int(weight_str)
        except (TypeError, ValueError):
            self.logger.error(f"Invalid weight value in limit usage: {weight_str}")
            return
        self.updated_at = time.monotonic()

        if self.current_weight > self.weight_limit * 0.8:
            self.logger.warning(
                f"Approaching Binance rate limit: {self.current_weight}/{self.weight_limit} "
                f"({self.current_weight / self.weight_limit * 100:.1f}%)"
            )

    def seconds_until_reset(self) -> float:
        if self.updated_at is None:
            return 0.0
        return max(0.0, WEIGHT_WINDOW_SECONDS - (time.monotonic() - self.updated_at))

    def check_limit(self) -> bool:
        """True if usage is below 90% of the limit or the reading has expired."""
        return self.current_weight < self.weight_limit * 0.9 or self.seconds_until_reset() == 0


class BinanceGateway(ExchangeGateway):
    """
    Live ExchangeGateway backed by Binance Futures REST API.

    Example:
        >>> gateway = BinanceGateway(api_key="...", api_secret="...", is_testnet=True)
        >>> ticker = await gateway.get_best_price("BTCUSDT")
        >>> ticker.bid_price
        45000.1
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        is_testnet: bool = True,
        client: Optional[UMFutures] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            api_key: Binance API key
            api_secret: Binance API secret
            is_testnet: Whether to use testnet (default: True)
            client: Pre-built UMFutures client (tests inject a mock)
            max_retries: Retry attempts for transient failures
            retry_delay: Initial retry delay in seconds
        """
        self.is_testnet = is_testnet
        base_url = (
            "https://testnet.binancefuture.com"
            if is_testnet
            else "https://fapi.binance.com"
        )
        self.client = client or UMFutures(
            key=api_key,
            secret=api_secret,
            base_url=base_url,
            show_limit_usage=True,
        )
        self.weight_tracker = RequestWeightTracker()
        self._retry = retry_with_backoff(max_retries=max_retries, initial_delay=retry_delay)
        self.logger = logging.getLogger(__name__)

    def _unwrap(self, response: Any) -> Any:
        """Record weight usage and unwrap ``data`` when show_limit_usage is on."""
        if isinstance(response, dict) and "data" in response and "limit_usage" in response:
            self.weight_tracker.update(response["limit_usage"])
            return response["data"]
        return response

    async def _call(
        self,
        operation: str,
        method: Callable[..., Any],
        symbol: Optional[str] = None,
        **params: Any,
    ) -> Any:
        """
        Run a blocking client call off the event loop and translate failures.

        Raises:
            MarketDataError: Any client, server or transport failure
        """
        if not self.weight_tracker.check_limit():
            wait = self.weight_tracker.seconds_until_reset()
            self.logger.warning(
                f"Request weight {self.weight_tracker.current_weight}/{self.weight_tracker.weight_limit}, "
                f"delaying {operation} by {wait:.1f}s"
            )
            await asyncio.sleep(wait)
        call = self._retry(method)
        try:
            response = await asyncio.to_thread(call, **params)
        except ClientError as e:
            if e.error_code == INVALID_SYMBOL_CODE and symbol:
                raise MarketDataError(
                    f"No price data available for {symbol}", symbol=symbol, code=e.error_code
                ) from e
            raise MarketDataError(
                f"{operation} failed: code={e.error_code}, msg={e.error_message}",
                symbol=symbol,
                code=e.error_code,
            ) from e
        except ServerError as e:
            raise MarketDataError(
                f"{operation} failed: server error status={e.status_code}, msg={e.message}",
                symbol=symbol,
            ) from e
        except RequestException as e:
            raise MarketDataError(f"{operation} failed: network error: {e}", symbol=symbol) from e
        return self._unwrap(response)

    async def get_best_price(self, symbol: str) -> BookTicker:
        data = await self._call("get_best_price", self.client.book_ticker, symbol=symbol)
        if not data:
            raise MarketDataError(f"No price data available for {symbol}", symbol=symbol)
        return BookTicker.from_exchange(data)

    async def get_all_best_prices(self) -> Dict[str, BookTicker]:
        data = await self._call("get_all_best_prices", self.client.book_ticker)
        tickers = [BookTicker.from_exchange(item) for item in data or []]
        return {ticker.symbol: ticker for ticker in tickers}

    async def get_24h_stats(self, symbol: str) -> DailyStats:
        data = await self._call("get_24h_stats", self.client.ticker_24hr_price_change, symbol=symbol)
        if isinstance(data, list):
            data = next((item for item in data if item.get("symbol") == symbol), None)
        if not data:
            raise MarketDataError(f"No market data found for {symbol}", symbol=symbol)
        return DailyStats.from_exchange(data)

    async def get_recent_candles(self, symbol: str, interval: str = "1h", limit: int = 24) -> List[Candle]:
        rows = await self._call(
            "get_recent_candles", self.client.klines, symbol=symbol, interval=interval, limit=limit
        )
        return [Candle.from_kline(row) for row in rows or []]

    async def get_account_balances(self) -> List[AccountBalance]:
        data = await self._call("get_account_balances", self.client.balance)
        return [AccountBalance.from_exchange(item) for item in data or []]

    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        params = {"symbol": symbol} if symbol else {}
        data = await self._call("get_positions", self.client.get_position_risk, **params)
        positions = []
        for item in data or []:
            position = Position.from_exchange(item)
            if position is not None:
                positions.append(position)
        return positions

    async def submit_order(self, request: OrderRequest) -> Order:
        params = request.to_params()
        self.logger.info(f"Submitting order: {params}")
        data = await self._call("submit_order", self.client.new_order, **params)
        return Order.from_exchange(data)

    async def cancel_order(self, symbol: str, order_id: str) -> Order:
        data = await self._call("cancel_order", self.client.cancel_order, symbol=symbol, orderId=order_id)
        return Order.from_exchange(data)

    async def get_order(self, symbol: str, order_id: str) -> Order:
        data = await self._call("get_order", self.client.query_order, symbol=symbol, orderId=order_id)
        return Order.from_exchange(data)

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        params = {"symbol": symbol} if symbol else {}
        data = await self._call("get_open_orders", self.client.get_orders, **params)
        return [Order.from_exchange(item) for item in data or []]

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._call("set_leverage", self.client.change_leverage, symbol=symbol, leverage=leverage)
        self.logger.info(f"Leverage set to {leverage}x for {symbol}")

    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        try:
            await self._call(
                "set_margin_type", self.client.change_margin_type, symbol=symbol, marginType=margin_type
            )
        except MarketDataError as e:
            # Already set is not a failure
            if e.code == NO_NEED_TO_CHANGE_MARGIN_TYPE:
                self.logger.debug(f"Margin type already {margin_type} for {symbol}")
                return
            raise
        self.logger.info(f"Margin type set to {margin_type} for {symbol}")
