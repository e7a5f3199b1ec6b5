"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from clinic_ledger.config import settings

logger = logging.getLogger("clinic_ledger")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)


def log_payment_recorded(
    request_id: str,
    user_id: Optional[str],
    payment_id: str,
    plan_id: Optional[str],
    amount_minor: int,
    balance_minor: Optional[int],
    notification_error: Optional[str],
) -> None:
    """Log structured payment outcome for audit"""
    logger.info(
        "Payment recorded",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "action": "record_payment",
            "payment_id": payment_id,
            "plan_id": plan_id,
            "amount_minor": amount_minor,
            "balance_minor": balance_minor,
            "overpaid": balance_minor is not None and balance_minor < 0,
            "notification_outcome": "failed" if notification_error else "ok",
        },
    )


def log_domain_error(
    error: Exception,
    action: str,
    request_id: str = "unknown",
    user_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    level: int = logging.WARNING,
) -> None:
    """Log a rejected operation with the identifiers needed to audit it"""
    logger.log(
        level,
        f"{action} rejected: {error}",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "action": action,
            "entity_id": entity_id,
            "error_type": type(error).__name__,
        },
    )
