"""Order creation and the mandate-opening step shared with failover"""

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from bnpl_gateway.config import settings
from bnpl_gateway.domain.exceptions import (
    Forbidden,
    InsufficientStock,
    NotFound,
    ProviderError,
    ProviderTimeout,
    ValidationError,
)
from bnpl_gateway.domain.installments import split_installments
from bnpl_gateway.domain.lifecycle import transition_order
from bnpl_gateway.domain.models import (
    CallerIdentity,
    CartLine,
    MandateStatus,
    OpenedMandate,
    OrderStatus,
    PaymentInstructions,
    ProductStatus,
)
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient
from bnpl_gateway.infrastructure.database.models import Customer, CustomerAccount, Mandate, Order
from bnpl_gateway.infrastructure.database.repositories import (
    AccountRepository,
    CustomerRepository,
    MandateRepository,
    OrderRepository,
    ProductRepository,
)
from bnpl_gateway.infrastructure.observability.logging import log_order_created
from bnpl_gateway.infrastructure.observability.metrics import record_order_created
from bnpl_gateway.services.notifications import notify_customer, notify_vendor
from bnpl_gateway.utils.date_utils import mandate_window

logger = logging.getLogger(__name__)


@dataclass
class OrderCreationResult:
    order: Order
    mandate: Optional[Mandate]
    payment_instructions: Optional[PaymentInstructions]


class OrderService:
    """Creates orders atomically with their mandate or invoice"""

    def __init__(self, db: Session, provider: MandateProviderClient, degraded_mode: bool | None = None):
        self.db = db
        self.provider = provider
        self.degraded_mode = settings.degraded_mode if degraded_mode is None else degraded_mode
        self.customers = CustomerRepository(db)
        self.products = ProductRepository(db)
        self.accounts = AccountRepository(db)
        self.orders = OrderRepository(db)
        self.mandates = MandateRepository(db)

    async def create_order(
        self,
        identity: CallerIdentity,
        lines: Sequence[CartLine],
        shipping_address: str,
        installments: int | None = None,
        account_id: uuid.UUID | None = None,
        request_id: str = "unknown",
    ) -> OrderCreationResult:
        """
        Create an order and open its mandate (installments) or invoice (single payment).

        Flow:
        1. Resolve the caller's customer profile
        2. Validate the debit account when paying in installments
        3. Lock products, check and decrement stock, snapshot line items
        4. Persist the order as pending
        5. Open the mandate/invoice with the provider
        6. Commit everything, or roll everything back

        Raises:
            Forbidden: Caller is not a customer
            NotFound: Customer profile or product missing
            ValidationError: Bad cart, installment count or account
            InsufficientStock: A line asks for more than is in stock
            ProviderError: Provider failed and degraded mode is off
            ProviderTimeout: Provider outcome unknown (never degraded)
        """
        start_time = time.time()
        num_installments = installments or 1

        try:
            customer = self._resolve_customer(identity)
            self._validate_request(lines, num_installments)
            is_recurring = num_installments > 1

            account = self._resolve_account(customer, account_id, required=is_recurring)
            total_amount, order_items, vendor_id = self._reserve_stock(lines)

            schedule = split_installments(total_amount, num_installments) if is_recurring else None
            order = self.orders.create_order(
                customer_id=customer.id,
                vendor_id=vendor_id,
                total_amount=total_amount,
                installments=num_installments if is_recurring else None,
                amount_per_installment=schedule.amount_per_installment if schedule else None,
                status=OrderStatus.PENDING,
                order_items=order_items,
                shipping_address=shipping_address,
            )

            mandate = await self.open_mandate(order, customer, account, total_amount, num_installments)
            if mandate is not None:
                order.current_mandate_id = mandate.id
                transition_order(order, OrderStatus.AUTHORIZED)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        mandate_source = "none"
        if mandate is not None:
            mandate_source = "synthesized" if mandate.locally_synthesized else "provider"
        record_order_created(is_recurring, mandate_source)
        log_order_created(
            request_id,
            str(order.id),
            str(customer.id),
            str(order.total_amount),
            num_installments,
            str(mandate.id) if mandate else None,
            (time.time() - start_time) * 1000,
        )
        notify_customer(customer.id, "order_created", order_id=str(order.id))
        notify_vendor(order.vendor_id, "order_received", order_id=str(order.id))

        instructions = None
        if mandate is not None:
            instructions = PaymentInstructions(
                virtual_account=mandate.virtual_account,
                amount=mandate.amount_per_installment,
                bank_name=account.bank_name if account is not None else None,
            )
        return OrderCreationResult(order=order, mandate=mandate, payment_instructions=instructions)

    async def open_mandate(
        self,
        order: Order,
        customer: Customer,
        account: Optional[CustomerAccount],
        amount: Decimal,
        installments: int,
        recurring: bool | None = None,
    ) -> Optional[Mandate]:
        """
        Ask the provider for a mandate (installments > 1 or a replacement) or a single invoice.

        Only persists the Mandate row; the caller links it to the order.
        Returns None for single-payment invoices. A replacement mandate with
        one installment left passes recurring=True explicitly.

        Raises:
            ProviderError: Provider failed and degraded mode is off
            ProviderTimeout: Always propagated; the outcome must be reconciled first
        """
        if recurring is None:
            recurring = installments > 1
        wants_mandate = recurring and account is not None

        try:
            opened = await self.provider.open_mandate_or_invoice(customer, account, amount, installments, order.id)
            synthesized = False
        except ProviderTimeout:
            raise
        except ProviderError as e:
            if not self.degraded_mode:
                raise
            logger.warning(
                f"Degraded mode: opening order {order.id} without provider confirmation",
                extra={"order_id": str(order.id), "provider_error": e.message},
            )
            opened = OpenedMandate(external_id=f"LOCAL-{uuid.uuid4().hex}")
            synthesized = True

        if not wants_mandate:
            return None

        schedule = split_installments(amount, installments)
        start_date, end_date = opened.start_date, opened.end_date
        if start_date is None or end_date is None:
            start_date, end_date = mandate_window(installments)

        return self.mandates.create_mandate(
            order_id=order.id,
            customer_account_id=account.id,
            external_mandate_id=opened.external_id,
            virtual_account=opened.virtual_account,
            amount_per_installment=schedule.amount_per_installment,
            total_installments=installments,
            start_date=start_date,
            end_date=end_date,
            status=MandateStatus.PENDING_AUTH,
            locally_synthesized=synthesized,
        )

    def get_order(self, identity: CallerIdentity, order_id: uuid.UUID) -> Tuple[Order, Optional[Mandate]]:
        """Fetch an order with its current mandate; owner customer or admin only"""
        order = self.orders.get_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")

        if not identity.is_admin:
            customer = self.customers.get_by_user_id(identity.user_id)
            if identity.role != "customer" or customer is None or customer.id != order.customer_id:
                raise Forbidden("Forbidden")

        mandate = self.mandates.get_by_id(order.current_mandate_id) if order.current_mandate_id else None
        return order, mandate

    def list_orders(self, identity: CallerIdentity) -> List[Order]:
        """Caller's orders, newest first"""
        customer = self._resolve_customer(identity)
        return self.orders.list_for_customer(customer.id)

    def _resolve_customer(self, identity: CallerIdentity) -> Customer:
        if identity.role != "customer":
            raise Forbidden("Forbidden: Insufficient permissions")
        customer = self.customers.get_by_user_id(identity.user_id)
        if customer is None:
            raise NotFound("Customer profile not found")
        return customer

    def _validate_request(self, lines: Sequence[CartLine], num_installments: int) -> None:
        if not lines:
            raise ValidationError("Order must contain at least one item")
        if any(line.quantity < 1 for line in lines):
            raise ValidationError("Item quantity must be at least 1")
        if num_installments < 1 or num_installments > settings.max_installments:
            raise ValidationError(f"Installments must be between 1 and {settings.max_installments}")

    def _resolve_account(
        self,
        customer: Customer,
        account_id: uuid.UUID | None,
        required: bool,
    ) -> Optional[CustomerAccount]:
        if account_id is None:
            if required:
                raise ValidationError("Account ID is required for installment payments")
            return None

        account = self.accounts.get_by_id(account_id)
        if account is None or account.customer_id != customer.id:
            raise ValidationError("Account not found or does not belong to customer")
        if not account.verified:
            raise ValidationError("Account not verified. Please verify BVN first.")
        return account

    def _reserve_stock(self, lines: Sequence[CartLine]) -> Tuple[Decimal, list, str]:
        """Decrement stock for every line and snapshot it; first product's vendor owns the order"""
        total_amount = Decimal("0.00")
        order_items = []
        vendor_id = None

        for line in lines:
            product = self.products.get_for_update(line.product_id)
            if product is None:
                raise NotFound(f"Product {line.product_id} not found")

            if product.status == ProductStatus.ARCHIVED:
                raise ValidationError(f"{product.name} is no longer available")
            if product.stock_quantity < line.quantity:
                raise InsufficientStock(f"Insufficient stock for {product.name}")

            subtotal = product.price * line.quantity
            total_amount += subtotal
            order_items.append(
                {
                    "product_id": str(product.id),
                    "name": product.name,
                    "unit_price": str(product.price),
                    "quantity": line.quantity,
                    "subtotal": str(subtotal),
                }
            )

            product.stock_quantity -= line.quantity
            if product.stock_quantity == 0:
                product.status = ProductStatus.OUT_OF_STOCK

            if vendor_id is None:
                vendor_id = product.vendor_id

        return total_amount, order_items, vendor_id
