"""
Unit tests for retry_with_backoff decorator.
"""
import pytest
from unittest.mock import Mock, patch

from binance.error import ClientError, ServerError
from requests.exceptions import ConnectionError as RequestsConnectionError

from futures_core.core.retry import is_retryable, retry_with_backoff


def rate_limited():
    return ClientError(status_code=429, error_code=-1003, error_message="Rate limit exceeded", header={})


class TestRetryDecorator:
    """Test cases for @retry_with_backoff decorator."""

    @patch("futures_core.core.retry.time.sleep")
    def test_retry_on_rate_limit(self, mock_sleep):
        mock_func = Mock()
        mock_func.side_effect = [rate_limited(), rate_limited(), {"symbol": "BTCUSDT"}]

        @retry_with_backoff(max_retries=3, initial_delay=0.1)
        def book_ticker():
            return mock_func()

        assert book_ticker() == {"symbol": "BTCUSDT"}
        assert mock_func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.1, 0.2]

    @patch("futures_core.core.retry.time.sleep")
    def test_no_retry_on_fatal_error(self, mock_sleep):
        mock_func = Mock()
        mock_func.side_effect = ClientError(
            status_code=401, error_code=-2015, error_message="Invalid API key", header={}
        )

        @retry_with_backoff(max_retries=3, initial_delay=0.1)
        def balance():
            return mock_func()

        with pytest.raises(ClientError) as exc_info:
            balance()

        assert mock_func.call_count == 1
        assert exc_info.value.error_code == -2015
        mock_sleep.assert_not_called()

    @patch("futures_core.core.retry.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        mock_func = Mock(side_effect=ServerError(503, "Service unavailable"))

        @retry_with_backoff(max_retries=2, initial_delay=0.1)
        def klines():
            return mock_func()

        with pytest.raises(ServerError):
            klines()

        assert mock_func.call_count == 3

    @patch("futures_core.core.retry.time.sleep")
    def test_retry_on_connection_error(self, mock_sleep):
        mock_func = Mock(side_effect=[RequestsConnectionError("reset"), [1, 2]])

        @retry_with_backoff(max_retries=1, initial_delay=0.1)
        def get_orders():
            return mock_func()

        assert get_orders() == [1, 2]

    def test_other_exceptions_pass_through(self):
        mock_func = Mock(side_effect=KeyError("symbol"))

        @retry_with_backoff(max_retries=3, initial_delay=0.1)
        def query_order():
            return mock_func()

        with pytest.raises(KeyError):
            query_order()
        assert mock_func.call_count == 1

    def test_preserves_function_metadata(self):
        @retry_with_backoff()
        def change_leverage():
            """Change leverage."""

        assert change_leverage.__name__ == "change_leverage"
        assert change_leverage.__doc__ == "Change leverage."


class TestIsRetryable:

    @pytest.mark.parametrize(
        "error, expected",
        [
            (ClientError(429, -1003, "Too many requests", {}), True),
            (ClientError(400, -1001, "Internal error", {}), True),
            (ClientError(400, -1121, "Invalid symbol", {}), False),
            (ServerError(500, "Internal"), True),
            (ValueError("bad"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected
