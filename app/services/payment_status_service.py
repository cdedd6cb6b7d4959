from __future__ import annotations

from app.errors import IllegalTransitionError
from app.models import PaymentStatus


PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.AUTHORIZED, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.AUTHORIZED: frozenset(
        {PaymentStatus.CAPTURED, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.AWAITING_CONFIRMATION: frozenset({PaymentStatus.CONFIRMED, PaymentStatus.REJECTED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.CONFIRMED: frozenset(),
    PaymentStatus.REJECTED: frozenset(),
}

TERMINAL_PAYMENT_STATUSES = frozenset(status for status, targets in PAYMENT_STATUS_TRANSITIONS.items() if not targets)


def can_transition(current: PaymentStatus, requested: PaymentStatus) -> bool:
    if current == requested:
        return True
    return requested in PAYMENT_STATUS_TRANSITIONS.get(current, frozenset())


def ensure_payment_transition(current: PaymentStatus, requested: PaymentStatus) -> None:
    if not can_transition(current, requested):
        raise IllegalTransitionError('payment', current, requested)
