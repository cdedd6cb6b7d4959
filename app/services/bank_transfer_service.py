from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from app.errors import ConflictError, IllegalTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from app.models import OrderStatus, PaymentAuditAction, PaymentMethod, PaymentStatus, UserRole
from app.services.audit_service import log_payment_audit
from app.services.order_status_service import ensure_order_transition
from app.services.payment_status_service import ensure_payment_transition
from app.services.records import OrderRecord, PaymentAuditLogRecord, PaymentRecord
from app.services.repository import MarketplaceRepository, MarketplaceUnit

logger = logging.getLogger(__name__)

_BASE36_DIGITS = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'

PENDING_PAYMENT_STATUSES = (OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_CONFIRMATION)
PAID_ORDER_STATUSES = frozenset(
    {
        OrderStatus.PAYMENT_CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.PICKUP_SCHEDULED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.IN_TRANSIT,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    }
)
REJECTION_NOTE_PREFIX = '[Admin Action] Payment reference rejected: '


@dataclass(frozen=True)
class PaymentReviewOutcome:
    order: OrderRecord
    payment: PaymentRecord | None
    audit: PaymentAuditLogRecord


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _base36(value: int) -> str:
    if value == 0:
        return '0'
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return ''.join(reversed(digits))


def generate_payment_reference(order_id: str, *, now: datetime | None = None) -> str:
    moment = now or _now()
    return f'MWRD-{order_id}-{_base36(int(moment.timestamp() * 1000))}'


def _normalize_reference(reference: str | None) -> str:
    return (reference or '').strip()


def _load_order(uow: MarketplaceUnit, order_id: str) -> OrderRecord:
    order = uow.get_order(order_id, for_update=True)
    if order is None:
        raise NotFoundError('Order', order_id)
    return order


def _ensure_reference_available(uow: MarketplaceUnit, order: OrderRecord, reference: str) -> None:
    if reference == order.payment_reference:
        return
    holder = uow.find_order_by_payment_reference(reference)
    if holder is not None and holder.id != order.id:
        raise ConflictError('This payment reference has already been used on another order.')


def _ensure_expected_status(order: OrderRecord, expected_status: OrderStatus | None) -> None:
    if expected_status is not None and order.status != expected_status:
        raise ConflictError(
            f'Order {order.id} moved from {expected_status.value} to {order.status.value} during review'
        )


def _awaiting_bank_transfer(uow: MarketplaceUnit, order_id: str) -> PaymentRecord | None:
    for payment in uow.list_payments(order_id=order_id):
        if payment.payment_method == PaymentMethod.BANK_TRANSFER and payment.status == PaymentStatus.AWAITING_CONFIRMATION:
            return payment
    return None


def _new_bank_transfer_payment(order: OrderRecord, reference: str, now: datetime) -> PaymentRecord:
    return PaymentRecord(
        id=str(uuid4()),
        order_id=order.id,
        client_id=order.client_id,
        amount=order.amount,
        currency=order.currency,
        payment_method=PaymentMethod.BANK_TRANSFER,
        status=PaymentStatus.AWAITING_CONFIRMATION,
        description=f'Bank transfer for order {order.id}',
        metadata={'payment_reference': reference},
        created_at=now,
        updated_at=now,
    )


def submit_payment_reference(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    client_id: str,
    reference: str,
    notes: str | None = None,
) -> PaymentReviewOutcome:
    normalized = _normalize_reference(reference)
    if not normalized:
        raise ValidationError('Payment reference is required')
    cleaned_notes = (notes or '').strip() or None

    with repository.unit_of_work() as uow:
        order = _load_order(uow, order_id)
        if order.client_id != client_id:
            raise PermissionDeniedError('You can only submit payment references for your own orders')
        ensure_order_transition(order.status, OrderStatus.AWAITING_CONFIRMATION)
        _ensure_reference_available(uow, order, normalized)

        now = _now()
        action = (
            PaymentAuditAction.REFERENCE_RESUBMITTED
            if order.status == OrderStatus.AWAITING_CONFIRMATION
            else PaymentAuditAction.REFERENCE_SUBMITTED
        )
        updated = uow.save_order(
            replace(
                order,
                status=OrderStatus.AWAITING_CONFIRMATION,
                payment_reference=normalized,
                payment_submitted_at=now,
                payment_notes=cleaned_notes if cleaned_notes is not None else order.payment_notes,
                updated_at=now,
            )
        )

        payment = _awaiting_bank_transfer(uow, order.id)
        if payment is None:
            payment = uow.save_payment(_new_bank_transfer_payment(updated, normalized, now))
        else:
            payment = uow.save_payment(
                replace(payment, metadata={**payment.metadata, 'payment_reference': normalized}, updated_at=now)
            )

        audit = log_payment_audit(
            uow,
            order_id=order.id,
            actor_user_id=client_id,
            actor_role=UserRole.CLIENT,
            action=action,
            from_status=order.status,
            to_status=OrderStatus.AWAITING_CONFIRMATION,
            payment_reference=normalized,
            notes=cleaned_notes,
            metadata={'source': 'submit_payment_reference', 'previous_reference': order.payment_reference},
        )

    logger.info('Payment reference submitted for order %s (%s)', order_id, action.value)
    return PaymentReviewOutcome(order=updated, payment=payment, audit=audit)


def mark_order_as_paid(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    admin_id: str,
    payment_reference: str | None = None,
    notes: str | None = None,
    expected_status: OrderStatus | None = None,
) -> PaymentReviewOutcome:
    cleaned_notes = (notes or '').strip() or None

    with repository.unit_of_work() as uow:
        order = _load_order(uow, order_id)
        _ensure_expected_status(order, expected_status)
        reference = _normalize_reference(payment_reference) or _normalize_reference(order.payment_reference)
        if not reference:
            raise ValidationError('Payment reference is required to confirm payment')
        if order.status == OrderStatus.PAYMENT_CONFIRMED:
            raise ConflictError(f'Order {order.id} is already confirmed as paid')
        ensure_order_transition(order.status, OrderStatus.PAYMENT_CONFIRMED)
        _ensure_reference_available(uow, order, reference)

        now = _now()
        updated = uow.save_order(
            replace(
                order,
                status=OrderStatus.PAYMENT_CONFIRMED,
                payment_reference=reference,
                payment_notes=cleaned_notes if cleaned_notes is not None else order.payment_notes,
                payment_confirmed_at=now,
                payment_confirmed_by=admin_id,
                updated_at=now,
            )
        )

        payment = _awaiting_bank_transfer(uow, order.id)
        if payment is None:
            payment = _new_bank_transfer_payment(updated, reference, now)
        ensure_payment_transition(payment.status, PaymentStatus.CONFIRMED)
        payment = uow.save_payment(
            replace(
                payment,
                status=PaymentStatus.CONFIRMED,
                metadata={**payment.metadata, 'payment_reference': reference},
                paid_at=now,
                updated_at=now,
            )
        )

        audit = log_payment_audit(
            uow,
            order_id=order.id,
            actor_user_id=admin_id,
            actor_role=UserRole.ADMIN,
            action=PaymentAuditAction.PAYMENT_CONFIRMED,
            from_status=order.status,
            to_status=OrderStatus.PAYMENT_CONFIRMED,
            payment_reference=reference,
            notes=cleaned_notes,
            metadata={'source': 'mark_order_as_paid'},
        )

    logger.info('Payment confirmed for order %s by %s', order_id, admin_id)
    return PaymentReviewOutcome(order=updated, payment=payment, audit=audit)


def reject_payment_submission(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    admin_id: str,
    reason: str,
    expected_status: OrderStatus | None = None,
) -> PaymentReviewOutcome:
    trimmed_reason = (reason or '').strip()
    if not trimmed_reason:
        raise ValidationError('Rejection reason is required')

    with repository.unit_of_work() as uow:
        order = _load_order(uow, order_id)
        _ensure_expected_status(order, expected_status)
        if order.status != OrderStatus.AWAITING_CONFIRMATION:
            raise IllegalTransitionError('order', order.status, OrderStatus.PENDING_PAYMENT)

        admin_note = f'{REJECTION_NOTE_PREFIX}{trimmed_reason}'
        existing_notes = (order.payment_notes or '').strip()
        now = _now()
        updated = uow.save_order(
            replace(
                order,
                status=OrderStatus.PENDING_PAYMENT,
                payment_notes=f'{order.payment_notes}\n{admin_note}' if existing_notes else admin_note,
                payment_submitted_at=None,
                payment_confirmed_at=None,
                payment_confirmed_by=None,
                updated_at=now,
            )
        )

        payment = _awaiting_bank_transfer(uow, order.id)
        if payment is not None:
            ensure_payment_transition(payment.status, PaymentStatus.REJECTED)
            payment = uow.save_payment(
                replace(payment, status=PaymentStatus.REJECTED, failure_reason=trimmed_reason, updated_at=now)
            )

        audit = log_payment_audit(
            uow,
            order_id=order.id,
            actor_user_id=admin_id,
            actor_role=UserRole.ADMIN,
            action=PaymentAuditAction.PAYMENT_REJECTED,
            from_status=OrderStatus.AWAITING_CONFIRMATION,
            to_status=OrderStatus.PENDING_PAYMENT,
            payment_reference=order.payment_reference,
            notes=trimmed_reason,
            metadata={'source': 'reject_payment_submission'},
        )

    logger.info('Payment submission rejected for order %s by %s', order_id, admin_id)
    return PaymentReviewOutcome(order=updated, payment=payment, audit=audit)


def set_payment_link(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    payment_link_url: str,
) -> OrderRecord:
    url = (payment_link_url or '').strip()
    if not url.startswith(('https://', 'http://')):
        raise ValidationError('Payment link must be an http(s) URL')

    with repository.unit_of_work() as uow:
        order = _load_order(uow, order_id)
        if order.status not in (OrderStatus.CONFIRMED, OrderStatus.PENDING_PAYMENT):
            raise ValidationError(f'Payment links can only be sent for payable orders, not {order.status.value}')
        now = _now()
        return uow.save_order(replace(order, payment_link_url=url, payment_link_sent_at=now, updated_at=now))


def get_payment_audit_logs(repository: MarketplaceRepository, *, order_id: str) -> list[PaymentAuditLogRecord]:
    with repository.unit_of_work() as uow:
        return uow.list_payment_audit_logs(order_id=order_id)


def payment_statistics(orders: list[OrderRecord]) -> dict:
    stats = {
        'pending_payment': {'count': 0, 'amount': Decimal('0.00')},
        'paid': {'count': 0, 'amount': Decimal('0.00')},
        'total': {'count': len(orders), 'amount': Decimal('0.00')},
    }
    for order in orders:
        stats['total']['amount'] += order.amount
        if order.status in PENDING_PAYMENT_STATUSES:
            bucket = stats['pending_payment']
        elif order.status in PAID_ORDER_STATUSES:
            bucket = stats['paid']
        else:
            continue
        bucket['count'] += 1
        bucket['amount'] += order.amount
    return stats
