"""
Process-wide logging: console output, a rotating system log and a
separate JSON trade journal.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Generator

TRADE_LOGGER_NAME = 'trades'
SYSTEM_LOG_FILE = 'futures_core.log'
TRADE_LOG_FILE = 'trades.log'

SYSTEM_LOG_MAX_BYTES = 10 * 1024 * 1024
SYSTEM_LOG_BACKUPS = 5
TRADE_LOG_BACKUPS = 30

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s'


class TradeLogFilter(logging.Filter):
    """Passes only records emitted on the trade journal logger."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name == TRADE_LOGGER_NAME


def _with_level(handler: logging.Handler, level: int, formatter=None) -> logging.Handler:
    handler.setLevel(level)
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler


class TradingLogger:
    """
    Installs the handler set on the root logger.

    Console gets INFO and above, futures_core.log keeps everything down to
    DEBUG, and trades.log receives only journal entries written through
    log_trade(). Calling it again replaces the previous handlers.
    """

    def __init__(self, config: Dict[str, Any]):
        # config keys: log_level (name of a logging level), log_dir
        self.log_level = config.get('log_level', 'INFO')
        self.log_dir = Path(config.get('log_dir', 'logs'))
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._install_handlers()

    def _install_handlers(self) -> None:
        root = logging.getLogger()
        root.setLevel(getattr(logging, self.log_level.upper()))
        for existing in list(root.handlers):
            root.removeHandler(existing)

        formatter = logging.Formatter(LOG_FORMAT)
        system_log = RotatingFileHandler(
            self.log_dir / SYSTEM_LOG_FILE,
            maxBytes=SYSTEM_LOG_MAX_BYTES,
            backupCount=SYSTEM_LOG_BACKUPS,
        )
        journal = TimedRotatingFileHandler(
            self.log_dir / TRADE_LOG_FILE,
            when='midnight',
            backupCount=TRADE_LOG_BACKUPS,
        )
        journal.addFilter(TradeLogFilter())

        for handler in (
            _with_level(logging.StreamHandler(sys.stdout), logging.INFO, formatter),
            _with_level(system_log, logging.DEBUG, formatter),
            _with_level(journal, logging.INFO),
        ):
            root.addHandler(handler)

    @staticmethod
    def log_trade(action: str, data: Dict[str, Any]) -> None:
        """
        Append one JSON object to the trade journal.

        ``action`` is one of FILL_APPLIED, POSITION_REVERSED, POSITION_CLOSED
        or ORDER_REJECTED_BY_RISK; decimal values in ``data`` are expected as
        strings so they survive serialization unrounded.
        """
        entry = {'timestamp': datetime.now(timezone.utc).isoformat(), 'action': action}
        entry.update(data)
        logging.getLogger(TRADE_LOGGER_NAME).info(json.dumps(entry, default=str))


@contextmanager
def log_execution_time(operation: str) -> Generator[None, None, None]:
    """Emit a DEBUG line with the wall time spent inside the block."""
    started = time.perf_counter()
    try:
        yield
    finally:
        logging.debug(f"{operation} completed in {time.perf_counter() - started:.3f}s")
