"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from bnpl_gateway.domain.models import MandateStatus, OrderStatus, ProviderMandateStatus


class _CamelRequest(BaseModel):
    """Accepts both snake_case and the storefront's camelCase keys"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartItem(_CamelRequest):
    """Single cart line"""

    product_id: UUID
    quantity: int = Field(..., gt=0, description="Units requested")


class CreateOrderRequest(_CamelRequest):
    """Request body for POST /v1/orders"""

    items: List[CartItem] = Field(..., min_length=1)
    installments: Optional[int] = Field(default=None, ge=1, description="Omit or 1 for single payment")
    account_id: Optional[UUID] = Field(default=None, description="Verified account to debit")
    shipping_address: str = Field(..., min_length=1)


class OrderItemSchema(BaseModel):
    """Line item snapshot taken at order creation"""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal


class OrderSummary(BaseModel):
    """Order as returned to the customer"""

    id: str
    total_amount: Decimal
    installments: Optional[int] = None
    amount_per_installment: Optional[Decimal] = None
    installments_paid: int
    amount_paid: Decimal
    status: OrderStatus
    items: List[OrderItemSchema]
    shipping_address: str
    created_at: Optional[datetime] = None


class MandateSummary(BaseModel):
    """Current mandate of an order"""

    id: str
    external_mandate_id: str
    virtual_account: Optional[str] = None
    amount_per_installment: Decimal
    total_installments: int
    installments_paid: int
    start_date: date
    end_date: date
    status: MandateStatus
    locally_synthesized: bool = False
    replaced_by_mandate_id: Optional[str] = None


class PaymentInstructionsSchema(BaseModel):
    """Where and how much to pay first"""

    message: str
    virtual_account: Optional[str] = None
    amount: Decimal
    bank_name: Optional[str] = None


class CreateOrderResponse(BaseModel):
    """Response for POST /v1/orders"""

    message: str = "Order created successfully"
    order: OrderSummary
    mandate: Optional[MandateSummary] = None
    payment_instructions: Optional[PaymentInstructionsSchema] = None


class OrderDetailResponse(BaseModel):
    """Response for GET /v1/orders/{order_id}"""

    order: OrderSummary
    mandate: Optional[MandateSummary] = None


class OrderListResponse(BaseModel):
    """Response for GET /v1/orders"""

    orders: List[OrderSummary]


class LinkAccountRequest(_CamelRequest):
    """Request body for POST /v1/customers/{customer_id}/accounts"""

    account_number: str = Field(..., pattern=r"^\d{10}$", description="10-digit NUBAN")
    bank_code: str = Field(..., min_length=3, max_length=10)
    bank_name: str = Field(..., min_length=1, max_length=100)
    bvn: str = Field(..., pattern=r"^\d{11}$", description="11-digit Bank Verification Number")


class AccountSchema(BaseModel):
    """Linked account with the number masked"""

    id: str
    account_number_masked: str
    bank_code: str
    bank_name: str
    account_name: str
    priority: int
    verified: bool
    bvn_verified_at: Optional[datetime] = None


class AccountListResponse(BaseModel):
    """Response for GET /v1/customers/{customer_id}/accounts"""

    customer_id: str
    accounts: List[AccountSchema]


class WebhookAck(BaseModel):
    """Body returned to the webhook sender"""

    message: str
    outcome: Optional[str] = None


class WebhookHealthResponse(BaseModel):
    """Response for GET /webhooks/health"""

    status: str
    last_webhook_received: Optional[datetime] = None
    webhooks_processed_today: int
    timestamp: datetime


class MandateStatusResponse(BaseModel):
    """Response for GET /v1/mandates/{mandate_id}/status"""

    mandate_id: str
    local_status: MandateStatus
    provider_status: ProviderMandateStatus
    pending_failover_reference: Optional[str] = None


class FailoverResponse(BaseModel):
    """Response for POST /v1/mandates/{mandate_id}/failover"""

    mandate_id: str
    status: MandateStatus
    replaced_by_mandate_id: Optional[str] = None


class ErrorDetail(BaseModel):
    category: str
    message: str
    requires_reconciliation: Optional[bool] = None
    reference: Optional[str] = None


class ErrorResponse(BaseModel):
    """Structured error returned for every failed request"""

    error: ErrorDetail
