"""Mandate and order lifecycle state machines"""

from typing import Dict, FrozenSet

from bnpl_gateway.domain.exceptions import InvalidTransition
from bnpl_gateway.domain.models import MandateStatus, OrderStatus

MANDATE_TRANSITIONS: Dict[MandateStatus, FrozenSet[MandateStatus]] = {
    # pending_auth -> completed covers replacement mandates with one installment left
    MandateStatus.PENDING_AUTH: frozenset(
        {MandateStatus.ACTIVE, MandateStatus.COMPLETED, MandateStatus.FAILED}
    ),
    MandateStatus.ACTIVE: frozenset({MandateStatus.COMPLETED, MandateStatus.FAILED}),
    MandateStatus.FAILED: frozenset({MandateStatus.REPLACED}),
    MandateStatus.COMPLETED: frozenset(),
    MandateStatus.REPLACED: frozenset(),
}

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.AUTHORIZED, OrderStatus.FAILED}),
    OrderStatus.AUTHORIZED: frozenset(
        {OrderStatus.ACTIVE, OrderStatus.COMPLETED, OrderStatus.FAILED}
    ),
    OrderStatus.ACTIVE: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.COMPLETED, OrderStatus.FAILED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}

# Mandates that can still be debited
OPEN_MANDATE_STATES = frozenset({MandateStatus.PENDING_AUTH, MandateStatus.ACTIVE})


def can_transition_mandate(current: MandateStatus, target: MandateStatus) -> bool:
    return target in MANDATE_TRANSITIONS[MandateStatus(current)]


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[OrderStatus(current)]


def transition_mandate(mandate, target: MandateStatus) -> None:
    """
    Move a mandate row to a new status.

    Raises:
        InvalidTransition: If the lifecycle does not allow the move
    """
    if not can_transition_mandate(mandate.status, target):
        raise InvalidTransition(
            f"Mandate {mandate.id} cannot move from {MandateStatus(mandate.status).value} to {target.value}"
        )
    mandate.status = target


def transition_order(order, target: OrderStatus) -> None:
    """
    Move an order row to a new status.

    Raises:
        InvalidTransition: If the lifecycle does not allow the move
    """
    if not can_transition_order(order.status, target):
        raise InvalidTransition(
            f"Order {order.id} cannot move from {OrderStatus(order.status).value} to {target.value}"
        )
    order.status = target
