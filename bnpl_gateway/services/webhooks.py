"""Inbound payment-result webhook reconciliation"""

import logging
import uuid
from datetime import datetime, time as dt_time
from decimal import Decimal
from typing import Literal, Optional, Tuple

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session

from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import (
    MalformedPayload,
    NotFound,
    ProviderError,
    ProviderTimeout,
    Unauthorized,
    ValidationError,
)
from bnpl_gateway.domain.installments import applicable_amount, to_money
from bnpl_gateway.domain.lifecycle import OPEN_MANDATE_STATES, transition_mandate, transition_order
from bnpl_gateway.domain.models import (
    MandateStatus,
    OrderStatus,
    PaymentAttemptStatus,
    ProviderMandateStatus,
    WebhookOutcome,
)
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient
from bnpl_gateway.infrastructure.database.models import Mandate, Order, PaymentAttempt
from bnpl_gateway.infrastructure.database.repositories import (
    AccountRepository,
    CustomerRepository,
    MandateRepository,
    OrderRepository,
    PaymentAttemptRepository,
)
from bnpl_gateway.infrastructure.observability.logging import log_failover, log_webhook_processed
from bnpl_gateway.infrastructure.observability.metrics import failover_counter, record_webhook
from bnpl_gateway.services.failover import FailoverSelector
from bnpl_gateway.services.notifications import notify_customer, notify_vendor
from bnpl_gateway.services.orders import OrderService
from bnpl_gateway.utils.date_utils import utcnow
from bnpl_gateway.utils.signing import verify_webhook_signature

logger = logging.getLogger(__name__)

# Provider answers meaning no live mandate exists under a reference
RELEASABLE_PROVIDER_STATES = (
    ProviderMandateStatus.UNKNOWN,
    ProviderMandateStatus.FAILED,
    ProviderMandateStatus.CANCELLED,
)


class WebhookPayload(BaseModel):
    """Payment-result event as delivered by the provider"""

    model_config = ConfigDict(extra="allow")

    event_type: str = ""
    mandate_id: str = Field(..., min_length=1)
    transaction_reference: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    installment_number: Optional[int] = Field(default=None, ge=1)
    payment_date: Optional[datetime] = None
    status: Literal["success", "failed"]
    failure_reason: Optional[str] = None

    @model_validator(mode="after")
    def require_amount_on_success(self) -> "WebhookPayload":
        if self.status == "success" and self.amount <= 0:
            raise ValueError("amount must be positive for a successful payment")
        return self


class WebhookReconciler:
    """Applies each provider payment event to mandate and order state exactly once"""

    def __init__(
        self,
        db: Session,
        provider: MandateProviderClient,
        secret: str | None = None,
        degraded_mode: bool | None = None,
    ):
        self.db = db
        self.provider = provider
        self.secret = settings.webhook_secret if secret is None else secret
        self.order_service = OrderService(db, provider, degraded_mode=degraded_mode)
        self.selector = FailoverSelector(db)
        self.accounts = AccountRepository(db)
        self.customers = CustomerRepository(db)
        self.orders = OrderRepository(db)
        self.mandates = MandateRepository(db)
        self.attempts = PaymentAttemptRepository(db)

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """
        Authenticate, parse and apply one webhook delivery.

        Everything after the idempotency gate runs in one transaction, so a
        crash leaves either no attempt row (redelivery reprocesses) or the
        attempt row plus all state changes (redelivery is a no-op).

        Raises:
            Unauthorized: Signature missing or wrong; nothing parsed or stored
            MalformedPayload: Body is not a valid payment event
            NotFound: No mandate with that external id; webhooks never create mandates
        """
        if not verify_webhook_signature(raw_body, signature, self.secret):
            record_webhook("unauthorized")
            if not self.secret:
                logger.error("Webhook secret is not configured; rejecting delivery")
            raise Unauthorized("Invalid signature")

        payload = self.parse(raw_body)

        try:
            outcome = await self._apply(payload, raw_body)
            self.db.commit()
        except NotFound:
            self.db.rollback()
            record_webhook("not_found")
            raise
        except Exception:
            self.db.rollback()
            raise

        record_webhook(outcome.value)
        log_webhook_processed(payload.transaction_reference, payload.mandate_id, payload.status, outcome.value)
        return outcome

    def parse(self, raw_body: bytes) -> WebhookPayload:
        try:
            return WebhookPayload.model_validate_json(raw_body)
        except pydantic.ValidationError as e:
            record_webhook("malformed")
            raise MalformedPayload(f"Invalid webhook payload: {e.error_count()} error(s)") from e

    async def _apply(self, payload: WebhookPayload, raw_body: bytes) -> WebhookOutcome:
        mandate = self.mandates.get_by_external_id(payload.mandate_id)
        if mandate is None:
            logger.error(f"Mandate not found: {payload.mandate_id}")
            raise NotFound("Mandate not found")

        # Fast path; the unique constraint below is the authoritative guard
        if self.attempts.find_by_reference(payload.transaction_reference) is not None:
            logger.info(f"Duplicate webhook ignored: {payload.transaction_reference}")
            return WebhookOutcome.DUPLICATE

        attempt = self.attempts.record(
            mandate_id=mandate.id,
            installment_number=payload.installment_number or 1,
            amount=to_money(payload.amount),
            status=PaymentAttemptStatus(payload.status),
            failure_reason=payload.failure_reason,
            transaction_reference=payload.transaction_reference,
            webhook_data=raw_body.decode("utf-8", errors="replace"),
            attempted_at=payload.payment_date or utcnow(),
        )
        if attempt is None:
            logger.info(f"Concurrent duplicate webhook ignored: {payload.transaction_reference}")
            return WebhookOutcome.DUPLICATE

        order = self.orders.get_for_update(mandate.order_id)
        if order is None:
            raise RuntimeError(f"Order not found for mandate {mandate.id}")

        if payload.status == "success":
            return self._apply_success(mandate, order, attempt)
        return await self._apply_failure(mandate, order, attempt)

    def _apply_success(self, mandate: Mandate, order: Order, attempt: PaymentAttempt) -> WebhookOutcome:
        if mandate.status not in OPEN_MANDATE_STATES:
            logger.warning(
                f"Payment on {MandateStatus(mandate.status).value} mandate {mandate.id} recorded but not applied",
                extra={"transaction_reference": attempt.transaction_reference, "order_id": str(order.id)},
            )
            return WebhookOutcome.IGNORED

        mandate.installments_paid += 1
        if mandate.installments_paid >= mandate.total_installments:
            transition_mandate(mandate, MandateStatus.COMPLETED)
        elif mandate.status == MandateStatus.PENDING_AUTH:
            transition_mandate(mandate, MandateStatus.ACTIVE)

        credited = applicable_amount(order.total_amount, order.amount_paid, attempt.amount)
        if credited < to_money(attempt.amount):
            logger.warning(
                f"Overpayment on order {order.id}: credited {credited} of {attempt.amount}",
                extra={"transaction_reference": attempt.transaction_reference},
            )
        order.amount_paid = to_money(order.amount_paid) + credited

        expected = order.installments or 1
        if order.installments_paid < expected:
            order.installments_paid += 1

        if order.installments_paid >= expected:
            if order.status != OrderStatus.COMPLETED:
                transition_order(order, OrderStatus.COMPLETED)
        elif order.status == OrderStatus.AUTHORIZED:
            transition_order(order, OrderStatus.ACTIVE)  # First payment received

        logger.info(
            f"Payment processed successfully: Order {order.id}, Installment {attempt.installment_number}",
        )
        notify_customer(
            order.customer_id,
            "payment_success",
            order_id=str(order.id),
            installment=attempt.installment_number,
            amount=str(credited),
        )
        notify_vendor(
            order.vendor_id,
            "payment_received",
            order_id=str(order.id),
            installment=attempt.installment_number,
            amount=str(credited),
        )
        return WebhookOutcome.PROCESSED

    async def _apply_failure(self, mandate: Mandate, order: Order, attempt: PaymentAttempt) -> WebhookOutcome:
        if mandate.status not in OPEN_MANDATE_STATES:
            logger.warning(
                f"Failure on {MandateStatus(mandate.status).value} mandate {mandate.id} recorded but not applied",
                extra={"transaction_reference": attempt.transaction_reference, "order_id": str(order.id)},
            )
            return WebhookOutcome.IGNORED

        logger.info(f"Payment failed: Mandate {mandate.id}, Installment {attempt.installment_number}")
        transition_mandate(mandate, MandateStatus.FAILED)
        notify_customer(
            order.customer_id,
            "payment_failed",
            order_id=str(order.id),
            installment=attempt.installment_number,
            reason=attempt.failure_reason or "Unknown error",
        )
        return await self._fail_over(mandate, order)

    async def _fail_over(self, mandate: Mandate, order: Order, propagate_errors: bool = False) -> WebhookOutcome:
        """
        Move the order onto the next backup account, or fail it.

        The customer row stays locked until commit, so concurrent failures
        for the same customer pick and consume backups one at a time.
        """
        failed_account = self.accounts.get_by_id(mandate.customer_account_id)
        if failed_account is None:
            raise RuntimeError(f"Customer account not found: {mandate.customer_account_id}")

        self.selector.lock_customer(failed_account.customer_id)

        remaining_amount = to_money(order.total_amount) - to_money(order.amount_paid)
        if remaining_amount <= 0:
            # Earlier overpayments already covered the order
            if order.status != OrderStatus.COMPLETED:
                transition_order(order, OrderStatus.COMPLETED)
            failover_counter.labels(result="settled").inc()
            log_failover(str(order.id), str(mandate.id), "settled")
            return WebhookOutcome.PROCESSED

        backup = self.selector.select_backup(failed_account)

        if backup is None:
            transition_order(order, OrderStatus.FAILED)
            failover_counter.labels(result="no_backup").inc()
            log_failover(str(order.id), str(mandate.id), "no_backup")
            notify_customer(order.customer_id, "update_payment_method", order_id=str(order.id))
            return WebhookOutcome.PROCESSED

        customer = self.customers.get_by_id(order.customer_id)
        remaining_installments = max((order.installments or 1) - order.installments_paid, 1)

        try:
            replacement = await self.order_service.open_mandate(
                order,
                customer,
                backup,
                remaining_amount,
                remaining_installments,
                recurring=True,
            )
        except ProviderError as e:
            failover_counter.labels(result="provider_error").inc()
            log_failover(str(order.id), str(mandate.id), "provider_error", str(backup.id))
            if propagate_errors:
                raise
            if isinstance(e, ProviderTimeout):
                mandate.pending_failover_reference = e.reference
            logger.error(
                f"Failover for order {order.id} needs operator retry: {e.message}",
                extra={
                    "requires_reconciliation": e.requires_reconciliation,
                    "reference": mandate.pending_failover_reference,
                },
            )
            return WebhookOutcome.FAILOVER_PENDING

        mandate.replaced_by_mandate_id = replacement.id
        mandate.pending_failover_reference = None
        transition_mandate(mandate, MandateStatus.REPLACED)
        order.current_mandate_id = replacement.id

        failover_counter.labels(result="replaced").inc()
        log_failover(str(order.id), str(mandate.id), "replaced", str(backup.id))
        notify_customer(
            order.customer_id,
            "payment_account_switched",
            order_id=str(order.id),
            account_number_masked=f"****{backup.account_number[-4:]}",
        )
        return WebhookOutcome.PROCESSED

    async def retry_failover(self, mandate_id: uuid.UUID) -> Mandate:
        """
        Operator retry for a failed mandate whose replacement could not be opened.

        A replacement open that timed out leaves its request reference on the
        mandate; the retry is refused until reconcile_status has confirmed the
        provider never created that mandate.

        Raises:
            NotFound: Unknown mandate
            ValidationError: Mandate/order not awaiting failover, or an
                unreconciled replacement reference is pending
            ProviderError: Provider still failing (nothing changed)
            ProviderTimeout: Outcome unknown; the new reference is kept for reconciliation
        """
        try:
            mandate = self.mandates.get_by_id(mandate_id)
            if mandate is None:
                raise NotFound("Mandate not found")
            if mandate.status != MandateStatus.FAILED or mandate.replaced_by_mandate_id is not None:
                raise ValidationError("Mandate is not awaiting failover")
            if mandate.pending_failover_reference:
                raise ValidationError(
                    f"Replacement request {mandate.pending_failover_reference} has an unknown outcome; "
                    "reconcile the mandate status before retrying"
                )

            order = self.orders.get_for_update(mandate.order_id)
            if order.status in (OrderStatus.FAILED, OrderStatus.COMPLETED) or order.current_mandate_id != mandate.id:
                raise ValidationError("Order is not awaiting failover")

            await self._fail_over(mandate, order, propagate_errors=True)
            self.db.commit()
        except ProviderTimeout as e:
            self.db.rollback()
            self._hold_failover(mandate_id, e.reference)
            raise
        except Exception:
            self.db.rollback()
            raise
        return mandate

    def _hold_failover(self, mandate_id: uuid.UUID, reference: str | None) -> None:
        mandate = self.mandates.get_by_id(mandate_id)
        mandate.pending_failover_reference = reference
        self.db.commit()
        logger.error(
            f"Failover retry for mandate {mandate_id} timed out",
            extra={"requires_reconciliation": True, "reference": reference},
        )

    async def reconcile_status(self, mandate_id: uuid.UUID) -> Tuple[Mandate, ProviderMandateStatus]:
        """
        Compare local state with the provider's and apply safe forward moves.

        Only pending_auth -> active is applied automatically; a provider-side
        failure is reported for an operator to act on. A pending replacement
        reference is released only when the provider has no live mandate
        under it.
        """
        mandate = self.mandates.get_by_id(mandate_id)
        if mandate is None:
            raise NotFound("Mandate not found")

        if mandate.locally_synthesized:
            provider_status = ProviderMandateStatus.UNKNOWN
        else:
            provider_status = await self.provider.query_mandate_status(mandate.external_mandate_id)

        pending_status = None
        if mandate.pending_failover_reference:
            pending_status = await self.provider.query_mandate_status(mandate.pending_failover_reference)

        try:
            if provider_status == ProviderMandateStatus.ACTIVE and mandate.status == MandateStatus.PENDING_AUTH:
                transition_mandate(mandate, MandateStatus.ACTIVE)
                logger.info(f"Mandate {mandate.id} activated from provider status")
            elif provider_status in (ProviderMandateStatus.FAILED, ProviderMandateStatus.CANCELLED):
                logger.warning(
                    f"Provider reports mandate {mandate.id} as {provider_status.value}",
                    extra={"local_status": MandateStatus(mandate.status).value},
                )

            if pending_status in RELEASABLE_PROVIDER_STATES:
                logger.info(
                    f"Replacement request {mandate.pending_failover_reference} not live at provider; retry allowed",
                    extra={"provider_status": pending_status.value},
                )
                mandate.pending_failover_reference = None
            elif pending_status is not None:
                logger.warning(
                    f"Provider holds replacement {mandate.pending_failover_reference} for mandate {mandate.id}",
                    extra={"provider_status": pending_status.value},
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return mandate, provider_status

    def health(self) -> Tuple[int, Optional[datetime]]:
        """Attempts recorded since midnight UTC, and when the latest one happened"""
        midnight = datetime.combine(utcnow().date(), dt_time.min, tzinfo=utcnow().tzinfo)
        latest = self.attempts.latest()
        return self.attempts.count_since(midnight), latest.attempted_at if latest else None
