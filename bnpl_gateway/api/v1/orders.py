"""Order endpoints - create with mandate/invoice, fetch, list"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from bnpl_gateway.api.dependencies import get_identity, get_order_service, get_request_id
from bnpl_gateway.api.v1.schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    MandateSummary,
    OrderDetailResponse,
    OrderItemSchema,
    OrderListResponse,
    OrderSummary,
    PaymentInstructionsSchema,
)
from bnpl_gateway.domain.exceptions import DomainException
from bnpl_gateway.domain.models import CallerIdentity, CartLine
from bnpl_gateway.infrastructure.database.models import Mandate, Order
from bnpl_gateway.services.orders import OrderService

router = APIRouter()


def order_summary(order: Order) -> OrderSummary:
    return OrderSummary(
        id=str(order.id),
        total_amount=order.total_amount,
        installments=order.installments,
        amount_per_installment=order.amount_per_installment,
        installments_paid=order.installments_paid,
        amount_paid=order.amount_paid,
        status=order.status,
        items=[OrderItemSchema(**item) for item in order.order_items],
        shipping_address=order.shipping_address,
        created_at=order.created_at,
    )


def mandate_summary(mandate: Optional[Mandate]) -> Optional[MandateSummary]:
    if mandate is None:
        return None
    return MandateSummary(
        id=str(mandate.id),
        external_mandate_id=mandate.external_mandate_id,
        virtual_account=mandate.virtual_account,
        amount_per_installment=mandate.amount_per_installment,
        total_installments=mandate.total_installments,
        installments_paid=mandate.installments_paid,
        start_date=mandate.start_date,
        end_date=mandate.end_date,
        status=mandate.status,
        locally_synthesized=mandate.locally_synthesized,
        replaced_by_mandate_id=str(mandate.replaced_by_mandate_id) if mandate.replaced_by_mandate_id else None,
    )


@router.post("/orders", response_model=CreateOrderResponse, status_code=201)
async def create_order(
    request_body: CreateOrderRequest,
    request: Request,
    identity: CallerIdentity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    """
    Create an order from the cart.

    Installment orders (installments > 1) open a recurring debit mandate on
    the chosen verified account; single-payment orders open an invoice.
    Stock, order and mandate are committed together or not at all.
    """
    request_id = get_request_id(request)
    lines = [CartLine(product_id=item.product_id, quantity=item.quantity) for item in request_body.items]

    try:
        result = await service.create_order(
            identity,
            lines,
            request_body.shipping_address,
            installments=request_body.installments,
            account_id=request_body.account_id,
            request_id=request_id,
        )
    except DomainException:
        raise
    except Exception as e:
        logging.exception(f"Unexpected error creating order: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    instructions = None
    if result.payment_instructions is not None:
        instructions = PaymentInstructionsSchema(
            message=result.payment_instructions.message,
            virtual_account=result.payment_instructions.virtual_account,
            amount=result.payment_instructions.amount,
            bank_name=result.payment_instructions.bank_name,
        )

    return CreateOrderResponse(
        order=order_summary(result.order),
        mandate=mandate_summary(result.mandate),
        payment_instructions=instructions,
    )


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    identity: CallerIdentity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    """Caller's orders, newest first"""
    return OrderListResponse(orders=[order_summary(o) for o in service.list_orders(identity)])


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
def get_order(
    order_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    order, mandate = service.get_order(identity, order_id)
    return OrderDetailResponse(order=order_summary(order), mandate=mandate_summary(mandate))
