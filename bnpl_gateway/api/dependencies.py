"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from bnpl_gateway.domain.exceptions import Forbidden, Unauthorized
from bnpl_gateway.domain.models import CallerIdentity
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient
from bnpl_gateway.infrastructure.database.session import get_db
from bnpl_gateway.services.accounts import AccountService
from bnpl_gateway.services.orders import OrderService
from bnpl_gateway.services.webhooks import WebhookReconciler


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CallerIdentity:
    """Caller identity as forwarded by the upstream auth layer"""
    if not x_user_id or not x_user_role:
        raise Unauthorized("Authentication required")
    return CallerIdentity(user_id=x_user_id, role=x_user_role.lower())


def require_admin(identity: CallerIdentity = Depends(get_identity)) -> CallerIdentity:
    if not identity.is_admin:
        raise Forbidden("Forbidden: Admin access required")
    return identity


def get_provider_client(request: Request) -> MandateProviderClient:
    """Provider client chosen when the app was built"""
    return request.app.state.provider_client


def get_order_service(
    db: Session = Depends(get_db),
    provider: MandateProviderClient = Depends(get_provider_client),
) -> OrderService:
    return OrderService(db, provider)


def get_account_service(
    db: Session = Depends(get_db),
    provider: MandateProviderClient = Depends(get_provider_client),
) -> AccountService:
    return AccountService(db, provider)


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    provider: MandateProviderClient = Depends(get_provider_client),
) -> WebhookReconciler:
    return WebhookReconciler(db, provider)
