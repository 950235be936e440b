"""Inbound OnePipe payment webhooks"""

import logging

from fastapi import APIRouter, Depends, Request

from bnpl_gateway.api.dependencies import get_request_id, get_webhook_reconciler
from bnpl_gateway.api.errors import error_response
from bnpl_gateway.api.v1.schemas import WebhookAck, WebhookHealthResponse
from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import MalformedPayload, NotFound, Unauthorized
from bnpl_gateway.domain.models import WebhookOutcome
from bnpl_gateway.services.webhooks import WebhookReconciler
from bnpl_gateway.utils.date_utils import utcnow

router = APIRouter()


@router.post("/onepipe", response_model=WebhookAck)
async def receive_onepipe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Apply a payment-result event.

    The signature is checked against the exact raw body before anything is
    parsed. Redeliveries of an already-applied event return 200 so the
    provider stops retrying. Error bodies never echo internal details.
    """
    request_id = get_request_id(request)
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    try:
        outcome = await reconciler.handle(raw_body, signature)
    except Unauthorized:
        logging.warning("Invalid webhook signature", extra={"request_id": request_id})
        return error_response(401, "unauthorized", "Invalid signature")
    except MalformedPayload as e:
        logging.warning(f"Malformed webhook: {e.message}", extra={"request_id": request_id})
        return error_response(400, "malformed_payload", "Invalid webhook payload")
    except NotFound:
        return error_response(404, "not_found", "Mandate not found")
    except Exception as e:
        logging.exception(f"Webhook processing error: {e}", extra={"request_id": request_id})
        return error_response(500, "internal_error", "Internal server error")

    message = "Already processed" if outcome == WebhookOutcome.DUPLICATE else "Webhook processed successfully"
    return WebhookAck(message=message, outcome=outcome.value)


@router.get("/health", response_model=WebhookHealthResponse)
def webhook_health(reconciler: WebhookReconciler = Depends(get_webhook_reconciler)):
    """Liveness of the webhook pipeline: deliveries recorded today and the latest one"""
    count_today, latest = reconciler.health()
    return WebhookHealthResponse(
        status="healthy",
        last_webhook_received=latest,
        webhooks_processed_today=count_today,
        timestamp=utcnow(),
    )
