from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from app.errors import IllegalTransitionError, NotFoundError, ValidationError
from app.models import OrderStatus
from app.services.records import OrderRecord
from app.services.repository import MarketplaceRepository


S = OrderStatus

ORDER_STATUS_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    S.PENDING_ADMIN_CONFIRMATION: (S.CONFIRMED, S.PENDING_PAYMENT, S.CANCELLED),
    S.CONFIRMED: (S.PENDING_PAYMENT, S.AWAITING_CONFIRMATION, S.PAYMENT_CONFIRMED, S.PROCESSING, S.CANCELLED),
    S.PENDING_PAYMENT: (S.PENDING_ADMIN_CONFIRMATION, S.AWAITING_CONFIRMATION, S.PAYMENT_CONFIRMED, S.CANCELLED),
    S.AWAITING_CONFIRMATION: (S.PENDING_PAYMENT, S.PAYMENT_CONFIRMED, S.CANCELLED),
    S.PAYMENT_CONFIRMED: (S.PROCESSING, S.READY_FOR_PICKUP, S.PICKUP_SCHEDULED, S.PICKED_UP, S.CANCELLED),
    S.PROCESSING: (S.READY_FOR_PICKUP, S.PICKUP_SCHEDULED, S.PICKED_UP, S.CANCELLED),
    S.READY_FOR_PICKUP: (S.PICKUP_SCHEDULED, S.PICKED_UP, S.CANCELLED),
    S.PICKUP_SCHEDULED: (S.PICKED_UP, S.OUT_FOR_DELIVERY, S.IN_TRANSIT, S.CANCELLED),
    S.PICKED_UP: (S.OUT_FOR_DELIVERY, S.IN_TRANSIT, S.DELIVERED, S.CANCELLED),
    S.OUT_FOR_DELIVERY: (S.IN_TRANSIT, S.DELIVERED, S.CANCELLED),
    S.SHIPPED: (S.IN_TRANSIT, S.DELIVERED, S.CANCELLED),
    S.IN_TRANSIT: (S.DELIVERED, S.CANCELLED),
    S.DELIVERED: (S.COMPLETED, S.DISPUTED, S.REFUNDED),
    S.COMPLETED: (),
    S.DISPUTED: (S.REFUNDED, S.COMPLETED, S.CANCELLED),
    S.CANCELLED: (S.REFUNDED,),
    S.REFUNDED: (),
}

# Reachable only through bank transfer submission and payment review.
PAYMENT_CONTROLLED_TARGETS = frozenset({S.AWAITING_CONFIRMATION, S.PAYMENT_CONFIRMED})
PAYMENT_CONTROLLED_EDGES = frozenset({(S.AWAITING_CONFIRMATION, S.PENDING_PAYMENT)})

PAYABLE_ORDER_STATUSES = frozenset({S.CONFIRMED, S.PENDING_PAYMENT, S.AWAITING_CONFIRMATION})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _coerce(status) -> OrderStatus | None:
    try:
        return OrderStatus(status)
    except ValueError:
        return None


def can_transition_order_status(current, requested) -> bool:
    if current == requested:
        return True
    current_status = _coerce(current)
    requested_status = _coerce(requested)
    if current_status is None or requested_status is None:
        return False
    return requested_status in ORDER_STATUS_TRANSITIONS[current_status]


def allowed_order_status_transitions(current) -> list[OrderStatus]:
    current_status = _coerce(current)
    if current_status is None:
        return []
    return list(ORDER_STATUS_TRANSITIONS[current_status])


def ensure_order_transition(current: OrderStatus, requested: OrderStatus) -> None:
    if not can_transition_order_status(current, requested):
        raise IllegalTransitionError('order', current, requested)


def is_payment_controlled(current: OrderStatus, requested: OrderStatus) -> bool:
    if current == requested:
        return False
    return requested in PAYMENT_CONTROLLED_TARGETS or (current, requested) in PAYMENT_CONTROLLED_EDGES


def change_order_status(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    status: OrderStatus,
) -> OrderRecord:
    """Manual admin status change. Payment-controlled moves are refused."""
    with repository.unit_of_work() as uow:
        order = uow.get_order(order_id, for_update=True)
        if order is None:
            raise NotFoundError('Order', order_id)
        if is_payment_controlled(order.status, status):
            raise ValidationError(
                f'Order status {status.value} is set by the payment review flow and cannot be applied manually'
            )
        ensure_order_transition(order.status, status)
        if order.status == status:
            return order
        return uow.save_order(replace(order, status=status, updated_at=_now()))
