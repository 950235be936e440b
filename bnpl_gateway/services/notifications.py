"""
Customer and vendor notifications.

Delivery (email/SMS) belongs to a separate service; this module only
records the obligation as a structured log line that the delivery
pipeline consumes.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _emit(audience: str, recipient_id: str, kind: str, details: Dict[str, Any]) -> None:
    logger.info(
        f"Notification queued: {kind}",
        extra={"audience": audience, "recipient_id": recipient_id, "notification": kind, **details},
    )


def notify_customer(customer_id, kind: str, **details) -> None:
    _emit("customer", str(customer_id), kind, details)


def notify_vendor(vendor_id, kind: str, **details) -> None:
    _emit("vendor", str(vendor_id), kind, details)
