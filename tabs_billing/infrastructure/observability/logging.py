"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from tabs_billing.config import settings
from tabs_billing.utils.date_utils import isoformat_utc


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = isoformat_utc()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_allocation(
    payment_id: str,
    method: str,
    allocated_cents: int,
    unallocated_cents: int,
    billing_group_ids: list,
) -> None:
    """Log structured allocation outcome"""
    logging.info(
        "Payment allocated to billing groups",
        extra={
            "payment_id": payment_id,
            "step": "allocation_complete",
            "allocation_method": method,
            "allocated_cents": allocated_cents,
            "unallocated_cents": unallocated_cents,
            "billing_group_ids": billing_group_ids,
        },
    )


def log_reversal(payment_id: str, reversed_cents: int, billing_group_ids: list) -> None:
    logging.info(
        "Payment allocation reversed",
        extra={
            "payment_id": payment_id,
            "step": "reversal_complete",
            "reversed_cents": reversed_cents,
            "billing_group_ids": billing_group_ids,
        },
    )


def log_deletion(
    billing_group_id: str,
    organization_id: str,
    user_id: str,
    forced: bool,
    moved_line_items: int,
    target_group_id: Optional[str],
) -> None:
    logging.info(
        "Billing group deleted",
        extra={
            "billing_group_id": billing_group_id,
            "organization_id": organization_id,
            "user_id": user_id,
            "step": "deletion_complete",
            "forced": forced,
            "moved_line_items": moved_line_items,
            "target_group_id": target_group_id,
        },
    )
