"""
Append-only audit trail for leverage changes, order flow and risk decisions.

Each event is a single JSON object on its own line in a per-day
``audit_YYYYMMDD.jsonl`` file.
"""
import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

OPTIONAL_SECTIONS = ("symbol", "order_data", "response", "error", "additional_data")


class AuditEventType(Enum):
    ORDER_PLACED = "order_placed"
    ORDER_CANCELLED = "order_cancelled"

    FILL_APPLIED = "fill_applied"
    POSITION_REVERSED = "position_reversed"
    POSITION_SYNCED = "position_synced"

    LEVERAGE_SET = "leverage_set"
    MARGIN_TYPE_SET = "margin_type_set"

    API_ERROR = "api_error"

    RISK_VALIDATION = "risk_validation"
    RISK_REJECTION = "risk_rejection"


class AuditLogger:
    """
    Writes audit events to ``<log_dir>/audit_<date>.jsonl``.

    Every instance owns a private, non-propagating logger so audit lines never
    reach the console or the system log. A line looks like::

        {"timestamp": "2026-10-16T10:30:45.123456", "event_type": "risk_rejection",
         "operation": "check_order_risk", "symbol": "BTCUSDT",
         "error": {"reason": "VOLATILITY"}}
    """

    def __init__(self, log_dir: str = "logs/audit"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{datetime.now():%Y%m%d}.jsonl"

        self.logger = logging.getLogger(f"{__name__}.{id(self)}")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        file_handler = logging.FileHandler(self.log_file)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(file_handler)

    def log_event(
        self,
        event_type: AuditEventType,
        operation: str,
        symbol: Optional[str] = None,
        order_data: Optional[Dict[str, Any]] = None,
        response: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
        additional_data: Optional[Dict[str, Any]] = None
    ):
        """Record one event. Empty optional sections are left out of the line."""
        sections = {
            "symbol": symbol,
            "order_data": order_data,
            "response": response,
            "error": error,
            "additional_data": additional_data,
        }
        record = {
            "timestamp": datetime.now().isoformat(),
            "event_type": event_type.value,
            "operation": operation,
        }
        record.update((key, sections[key]) for key in OPTIONAL_SECTIONS if sections[key])
        self.logger.info(json.dumps(record, default=str))

    def close(self) -> None:
        while self.logger.handlers:
            handler = self.logger.handlers[0]
            self.logger.removeHandler(handler)
            handler.close()


def safe_audit(audit_logger: Optional[AuditLogger], **event: Any) -> None:
    """
    Forward ``event`` to ``audit_logger.log_event`` when auditing is enabled.

    A failing audit write is reported as a warning and never propagates into
    the trading operation that produced the event.
    """
    if audit_logger is None:
        return
    try:
        audit_logger.log_event(**event)
    except Exception as e:
        logging.getLogger(__name__).warning(f"Audit logging failed: {e}")
