from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from app.config import settings
from app.errors import IllegalTransitionError, NotFoundError, ValidationError
from app.models import PayoutStatus, UserRole
from app.services.credit_limit_service import parse_amount
from app.services.records import SupplierPayoutRecord
from app.services.repository import MarketplaceRepository

logger = logging.getLogger(__name__)

PAYOUT_STATUS_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED}),
    PayoutStatus.PAID: frozenset(),
    PayoutStatus.FAILED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition_payout(current: PayoutStatus, requested: PayoutStatus) -> bool:
    return current == requested or requested in PAYOUT_STATUS_TRANSITIONS.get(current, frozenset())


def _clean(value: str | None) -> str | None:
    value = (value or '').strip()
    return value or None


def record_supplier_payout(
    repository: MarketplaceRepository,
    *,
    supplier_id: str,
    order_id: str,
    amount,
    created_by: str,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> SupplierPayoutRecord:
    normalized = parse_amount(amount)
    if normalized <= 0:
        raise ValidationError('Payout amount must be greater than zero')

    with repository.unit_of_work() as uow:
        supplier = uow.get_user(supplier_id)
        if supplier is None or supplier.role != UserRole.SUPPLIER:
            raise NotFoundError('Supplier', supplier_id)
        order = uow.get_order(order_id)
        if order is None:
            raise NotFoundError('Order', order_id)
        if order.supplier_id != supplier_id:
            raise ValidationError(f'Order {order_id} does not belong to supplier {supplier_id}')
        now = _now()
        payout = uow.save_payout(
            SupplierPayoutRecord(
                id=str(uuid4()),
                supplier_id=supplier_id,
                order_id=order_id,
                amount=normalized,
                currency=order.currency or settings.default_currency,
                status=PayoutStatus.PENDING,
                payment_method=_clean(payment_method),
                reference_number=_clean(reference_number),
                notes=_clean(notes),
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        )
    logger.info('Payout %s of %s recorded for supplier %s', payout.id, normalized, supplier_id)
    return payout


def update_payout_status(
    repository: MarketplaceRepository,
    *,
    payout_id: str,
    status: PayoutStatus,
    reference_number: str | None = None,
    notes: str | None = None,
) -> SupplierPayoutRecord:
    """Status only moves forward: PENDING -> PROCESSING -> PAID, or to FAILED before PAID."""
    with repository.unit_of_work() as uow:
        payout = uow.get_payout(payout_id, for_update=True)
        if payout is None:
            raise NotFoundError('Payout', payout_id)
        if not can_transition_payout(payout.status, status):
            raise IllegalTransitionError('payout', payout.status, status)
        now = _now()
        updated = uow.save_payout(
            replace(
                payout,
                status=status,
                reference_number=_clean(reference_number) or payout.reference_number,
                notes=_clean(notes) or payout.notes,
                paid_at=now if status == PayoutStatus.PAID and payout.paid_at is None else payout.paid_at,
                updated_at=now,
            )
        )
    logger.info('Payout %s status %s -> %s', payout_id, payout.status.value, status.value)
    return updated


def list_supplier_payouts(repository: MarketplaceRepository, *, supplier_id: str | None = None) -> list[SupplierPayoutRecord]:
    with repository.unit_of_work() as uow:
        return uow.list_payouts(supplier_id=supplier_id)
