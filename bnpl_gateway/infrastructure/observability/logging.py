"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def __init__(self, *args, service_name: str = "bnpl-gateway", **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = "bnpl-gateway") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        service_name=service_name,
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_order_created(
    request_id: str,
    order_id: str,
    customer_id: str,
    total_amount: str,
    installments: int,
    mandate_id: str | None,
    duration_ms: float,
) -> None:
    """Log structured order creation outcome"""
    logging.info(
        "Order created",
        extra={
            "request_id": request_id,
            "order_id": order_id,
            "customer_id": customer_id,
            "step": "order_created",
            "total_amount": total_amount,
            "installments": installments,
            "mandate_id": mandate_id,
            "duration_ms": duration_ms,
        },
    )


def log_webhook_processed(
    transaction_reference: str,
    external_mandate_id: str,
    event_status: str,
    outcome: str,
) -> None:
    """Log the reconciliation outcome of one webhook delivery"""
    logging.info(
        "Webhook reconciled",
        extra={
            "transaction_reference": transaction_reference,
            "external_mandate_id": external_mandate_id,
            "step": "webhook_reconciled",
            "event_status": event_status,
            "outcome": outcome,
        },
    )


def log_failover(order_id: str, failed_mandate_id: str, result: str, backup_account_id: str | None = None) -> None:
    """Log a backup-account failover decision"""
    level = logging.WARNING if result != "replaced" else logging.INFO
    logging.log(
        level,
        f"Mandate failover {result}",
        extra={
            "order_id": order_id,
            "failed_mandate_id": failed_mandate_id,
            "step": "mandate_failover",
            "result": result,
            "backup_account_id": backup_account_id,
        },
    )
