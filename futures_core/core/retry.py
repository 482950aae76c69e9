"""
Exponential backoff for blocking exchange client calls.

BinanceGateway runs each client call on a worker thread, so the wrapper
blocks with ``time.sleep`` between attempts. Rate limits, 5xx responses and
transport failures are retried; any other error surfaces on the first attempt
for the gateway to translate.
"""

import logging
import time
from functools import wraps
from typing import Callable, Tuple, Type

from binance.error import ClientError, ServerError
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

# -1003 too many requests, -1001 disconnected, -1007 backend timeout
RETRYABLE_ERROR_CODES = frozenset({-1003, -1001, -1007})
RETRYABLE_HTTP_STATUS = frozenset({429, 500, 502, 503, 504})

TRANSPORT_ERRORS = (RequestsConnectionError, Timeout)
DEFAULT_RETRYABLE = (ClientError, ServerError) + TRANSPORT_ERRORS


def is_retryable(error: Exception) -> bool:
    if isinstance(error, ServerError) or isinstance(error, TRANSPORT_ERRORS):
        return True
    if isinstance(error, ClientError):
        return error.error_code in RETRYABLE_ERROR_CODES or error.status_code in RETRYABLE_HTTP_STATUS
    return False


def backoff_delays(max_retries: int, initial_delay: float, backoff_factor: float):
    """Yield the sleep before each retry: initial_delay, then multiplied each time."""
    delay = initial_delay
    for _ in range(max_retries):
        yield delay
        delay *= backoff_factor


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE,
):
    """
    Wrap a blocking call so transient exchange errors are retried.

    With the defaults a call is attempted up to four times, sleeping 1s, 2s
    and 4s in between. Exceptions outside ``retryable_exceptions``, or ones
    that ``is_retryable`` rejects, propagate immediately; when the retries run
    out the last error is re-raised as is.

        @retry_with_backoff(max_retries=2, initial_delay=0.5)
        def fetch_balance():
            return client.balance()
    """

    def decorator(func: Callable) -> Callable:
        name = func.__name__

        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            delays = backoff_delays(max_retries, initial_delay, backoff_factor)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    delay = next(delays, None) if is_retryable(e) else None
                    if delay is None:
                        logger.error(f"{name} gave up on attempt {attempt}: {type(e).__name__}: {e}")
                        raise
                    logger.warning(
                        f"{name} attempt {attempt}/{max_retries + 1} failed "
                        f"({type(e).__name__}: {e}), sleeping {delay}s"
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
