"""Operator endpoints for mandate reconciliation"""

import uuid

from fastapi import APIRouter, Depends

from bnpl_gateway.api.dependencies import get_webhook_reconciler, require_admin
from bnpl_gateway.api.v1.schemas import FailoverResponse, MandateStatusResponse
from bnpl_gateway.domain.models import CallerIdentity
from bnpl_gateway.services.webhooks import WebhookReconciler

router = APIRouter()


@router.get("/mandates/{mandate_id}/status", response_model=MandateStatusResponse)
async def get_mandate_status(
    mandate_id: uuid.UUID,
    _: CallerIdentity = Depends(require_admin),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Query the provider for a mandate's status and reconcile local state.

    Use after a provider timeout before retrying anything: the provider
    may already hold the mandate.
    """
    mandate, provider_status = await reconciler.reconcile_status(mandate_id)
    return MandateStatusResponse(
        mandate_id=str(mandate.id),
        local_status=mandate.status,
        provider_status=provider_status,
        pending_failover_reference=mandate.pending_failover_reference,
    )


@router.post("/mandates/{mandate_id}/failover", response_model=FailoverResponse)
async def retry_failover(
    mandate_id: uuid.UUID,
    _: CallerIdentity = Depends(require_admin),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """Retry opening a replacement mandate for a failed one left pending by a provider error"""
    mandate = await reconciler.retry_failover(mandate_id)
    return FailoverResponse(
        mandate_id=str(mandate.id),
        status=mandate.status,
        replaced_by_mandate_id=str(mandate.replaced_by_mandate_id) if mandate.replaced_by_mandate_id else None,
    )
