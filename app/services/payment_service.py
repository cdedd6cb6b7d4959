from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from app.config import settings
from app.errors import NotFoundError, RefundFinalizeError, RepositoryError, ValidationError
from app.models import PaymentMethod, PaymentStatus
from app.services.credit_limit_service import parse_amount, round_money
from app.services.payment_gateway import PaymentGateway, from_halalas, map_gateway_status, to_halalas
from app.services.payment_status_service import ensure_payment_transition
from app.services.records import PaymentRecord, RefundRecord
from app.services.repository import MarketplaceRepository

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.CAPTURED, PaymentStatus.PARTIALLY_REFUNDED})

_STATUS_TIMESTAMP_FIELDS = {
    PaymentStatus.AUTHORIZED: 'authorized_at',
    PaymentStatus.PAID: 'paid_at',
    PaymentStatus.FAILED: 'failed_at',
    PaymentStatus.REFUNDED: 'refunded_at',
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def create_payment(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    client_id: str,
    amount,
    payment_method: PaymentMethod,
    moyasar_payment_id: str | None = None,
    description: str | None = None,
    metadata: dict | None = None,
) -> PaymentRecord:
    normalized = parse_amount(amount)
    if normalized <= 0:
        raise ValidationError('Payment amount must be greater than zero')
    with repository.unit_of_work() as uow:
        order = uow.get_order(order_id)
        if order is None:
            raise NotFoundError('Order', order_id)
        now = _now()
        payment = uow.save_payment(
            PaymentRecord(
                id=str(uuid4()),
                order_id=order.id,
                client_id=client_id,
                amount=normalized,
                currency=order.currency or settings.default_currency,
                payment_method=payment_method,
                status=PaymentStatus.PENDING,
                moyasar_payment_id=moyasar_payment_id,
                description=description,
                metadata=dict(metadata or {}),
                created_at=now,
                updated_at=now,
            )
        )
    logger.info('Payment %s created for order %s', payment.id, order_id)
    return payment


def _with_status(payment: PaymentRecord, status: PaymentStatus, *, failure_reason: str | None = None, **fields):
    ensure_payment_transition(payment.status, status)
    now = _now()
    changes = dict(fields)
    stamp = _STATUS_TIMESTAMP_FIELDS.get(status)
    if stamp and status != payment.status:
        changes[stamp] = now
    if failure_reason is not None:
        changes['failure_reason'] = failure_reason
    return replace(payment, status=status, updated_at=now, **changes)


def update_payment_status(
    repository: MarketplaceRepository,
    *,
    payment_id: str,
    status: PaymentStatus,
    failure_reason: str | None = None,
) -> PaymentRecord:
    """Guarded status write; the matching *_at timestamp is stamped on entry."""
    with repository.unit_of_work() as uow:
        payment = uow.get_payment(payment_id, for_update=True)
        if payment is None:
            raise NotFoundError('Payment', payment_id)
        return uow.save_payment(_with_status(payment, status, failure_reason=failure_reason))


def _refunded_total(refunds: list[RefundRecord]) -> Decimal:
    return sum((r.amount for r in refunds if r.status == PaymentStatus.REFUNDED), Decimal('0'))


def process_refund(
    repository: MarketplaceRepository,
    gateway: PaymentGateway,
    *,
    payment_id: str,
    amount,
    reason: str,
    processed_by: str,
) -> RefundRecord:
    normalized = parse_amount(amount)
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('Refund reason is required')

    with repository.unit_of_work() as uow:
        payment = uow.get_payment(payment_id)
        if payment is None or not payment.moyasar_payment_id:
            raise NotFoundError('Payment with gateway id', payment_id)
        if payment.status not in REFUNDABLE_STATUSES:
            raise ValidationError(f'Payment {payment_id} cannot be refunded in status {payment.status.value}')
        already_refunded = _refunded_total(uow.list_refunds(payment_id=payment_id))
    if normalized <= 0 or normalized + already_refunded > payment.amount:
        raise ValidationError('Refund amount must be greater than zero and not exceed the payment amount')

    gateway_refund = gateway.refund_payment(
        payment.moyasar_payment_id,
        amount_halalas=to_halalas(normalized),
        reason=reason,
    )

    now = _now()
    with repository.unit_of_work() as uow:
        refund = uow.save_refund(
            RefundRecord(
                id=str(uuid4()),
                payment_id=payment.id,
                order_id=payment.order_id,
                amount=normalized,
                reason=reason,
                status=PaymentStatus.PENDING,
                processed_by=processed_by,
                moyasar_refund_id=gateway_refund.id,
                created_at=now,
                updated_at=now,
            )
        )

    try:
        with repository.unit_of_work() as uow:
            current = uow.get_payment(payment.id, for_update=True)
            if current is None:
                raise NotFoundError('Payment', payment.id)
            fully_refunded = round_money(already_refunded + normalized) >= current.amount
            target = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
            uow.save_payment(_with_status(current, target))
            refund = uow.save_refund(replace(refund, status=PaymentStatus.REFUNDED, updated_at=_now()))
    except Exception as exc:
        logger.exception('Refund %s: payment status update failed for payment %s', refund.id, payment.id)
        raise _recover_refund(repository, refund) from exc

    logger.info('Refund %s of %s processed for payment %s', refund.id, normalized, payment.id)
    return refund


def _recover_refund(repository: MarketplaceRepository, refund: RefundRecord) -> RefundFinalizeError:
    """Never leave a refund PENDING: delete it if still pending, else mark it FAILED."""
    try:
        with repository.unit_of_work() as uow:
            deleted = uow.delete_refund(refund.id, only_if_status=PaymentStatus.PENDING)
    except RepositoryError:
        logger.exception('Refund %s: rollback delete failed', refund.id)
        deleted = False
    if deleted:
        logger.warning('Refund %s rolled back after finalize error', refund.id)
        return RefundFinalizeError(refund.id, RefundFinalizeError.ROLLED_BACK)

    try:
        with repository.unit_of_work() as uow:
            current = uow.get_refund(refund.id, for_update=True)
            if current is not None and current.status == PaymentStatus.PENDING:
                uow.save_refund(replace(current, status=PaymentStatus.FAILED, updated_at=_now()))
    except RepositoryError:
        logger.exception('Refund %s: marking FAILED also failed', refund.id)
    else:
        logger.warning('Refund %s marked FAILED after finalize error', refund.id)
    return RefundFinalizeError(refund.id, RefundFinalizeError.MARKED_FAILED)


def sync_gateway_status(
    repository: MarketplaceRepository,
    gateway: PaymentGateway,
    *,
    payment_id: str,
) -> PaymentRecord:
    """Pull the gateway's view of a card payment and apply it through the guard."""
    with repository.unit_of_work() as uow:
        payment = uow.get_payment(payment_id)
    if payment is None or not payment.moyasar_payment_id:
        raise NotFoundError('Payment with gateway id', payment_id)

    remote = gateway.fetch_payment(payment.moyasar_payment_id)
    status = map_gateway_status(remote.status)
    if status == PaymentStatus.REFUNDED and remote.refunded_halalas < remote.amount_halalas:
        status = PaymentStatus.PARTIALLY_REFUNDED

    with repository.unit_of_work() as uow:
        current = uow.get_payment(payment_id, for_update=True)
        if current is None:
            raise NotFoundError('Payment', payment_id)
        updated = _with_status(
            current,
            status,
            failure_reason=remote.message if status == PaymentStatus.FAILED else None,
            card_last_four=remote.card_last_four or current.card_last_four,
            card_brand=remote.card_brand or current.card_brand,
            moyasar_transaction_url=remote.transaction_url or current.moyasar_transaction_url,
        )
        saved = uow.save_payment(updated)
    logger.info(
        'Payment %s synced from gateway: %s (%s paid)',
        payment_id,
        saved.status.value,
        from_halalas(remote.amount_halalas),
    )
    return saved


def list_payments(
    repository: MarketplaceRepository,
    *,
    order_id: str | None = None,
    client_id: str | None = None,
) -> list[PaymentRecord]:
    with repository.unit_of_work() as uow:
        return uow.list_payments(order_id=order_id, client_id=client_id)


def client_payment_stats(payments: list[PaymentRecord]) -> dict:
    paid = [p for p in payments if p.status == PaymentStatus.PAID]
    return {
        'total': len(payments),
        'paid': len(paid),
        'pending': sum(1 for p in payments if p.status == PaymentStatus.PENDING),
        'failed': sum(1 for p in payments if p.status == PaymentStatus.FAILED),
        'total_amount': sum((p.amount for p in paid), Decimal('0')),
    }
