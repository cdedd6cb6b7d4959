from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import uuid4

from app.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.models import CreditLimitAdjustmentType, UserRole
from app.services.records import CreditLimitAdjustmentRecord, UserRecord
from app.services.repository import MarketplaceRepository

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
MIN_REASON_LENGTH = 5
DEFAULT_HISTORY_LIMIT = 25


@dataclass(frozen=True)
class CreditLimitChange:
    previous_limit: Decimal
    new_limit: Decimal
    change_amount: Decimal


@dataclass(frozen=True)
class CreditAdjustmentResult:
    user: UserRecord
    adjustment: CreditLimitAdjustmentRecord


@dataclass(frozen=True)
class CreditSummary:
    client_id: str
    credit_limit: Decimal
    credit_used: Decimal
    credit_available: Decimal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(raw) -> Decimal:
    """Accepts str, int, float or Decimal; rejects NaN, infinities and negatives."""
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Invalid credit amount') from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError('Adjustment amount must be a non-negative number')
    return round_money(amount)


def validate_reason(reason: str | None) -> str:
    normalized = (reason or '').strip()
    if len(normalized) < MIN_REASON_LENGTH:
        raise ValidationError(f'Reason must be at least {MIN_REASON_LENGTH} characters')
    return normalized


def compute_credit_limit_change(
    adjustment_type: CreditLimitAdjustmentType,
    amount: Decimal,
    previous_limit: Decimal,
) -> CreditLimitChange:
    previous = round_money(previous_limit)
    amount = round_money(amount)
    if amount < 0:
        raise ValidationError('Adjustment amount must be a non-negative number')

    if adjustment_type == CreditLimitAdjustmentType.SET:
        new_limit = amount
    elif adjustment_type == CreditLimitAdjustmentType.INCREASE:
        if amount <= 0:
            raise ValidationError('Increase/decrease amount must be greater than zero')
        new_limit = previous + amount
    elif adjustment_type == CreditLimitAdjustmentType.DECREASE:
        if amount <= 0:
            raise ValidationError('Increase/decrease amount must be greater than zero')
        if amount > previous:
            raise ValidationError('Decrease amount exceeds current credit limit')
        new_limit = previous - amount
    else:
        raise ValidationError('Invalid adjustment type. Use SET, INCREASE, or DECREASE')

    new_limit = round_money(new_limit)
    return CreditLimitChange(previous_limit=previous, new_limit=new_limit, change_amount=new_limit - previous)


def adjust_client_credit_limit(
    repository: MarketplaceRepository,
    *,
    client_id: str,
    admin_id: str,
    adjustment_type: CreditLimitAdjustmentType,
    amount,
    reason: str,
) -> CreditAdjustmentResult:
    normalized_amount = parse_amount(amount)
    normalized_reason = validate_reason(reason)

    with repository.unit_of_work() as uow:
        admin = uow.get_user(admin_id)
        if admin is None or admin.role != UserRole.ADMIN:
            raise PermissionDeniedError('Only administrators can adjust credit limits')
        client = uow.get_user(client_id, for_update=True)
        if client is None:
            raise NotFoundError('User', client_id)
        if client.role != UserRole.CLIENT:
            raise ValidationError('Credit limit adjustments are only allowed for clients')

        change = compute_credit_limit_change(adjustment_type, normalized_amount, client.credit_limit or Decimal('0'))
        updated = uow.save_user(replace(client, credit_limit=change.new_limit))
        adjustment = uow.add_credit_adjustment(
            CreditLimitAdjustmentRecord(
                id=f'CLA-{uuid4().hex}',
                client_id=client.id,
                admin_id=admin.id,
                adjustment_type=adjustment_type,
                adjustment_amount=normalized_amount,
                change_amount=change.change_amount,
                previous_limit=change.previous_limit,
                new_limit=change.new_limit,
                reason=normalized_reason,
                created_at=_now(),
            )
        )

    logger.info(
        'Credit limit for %s %s by %s: %s -> %s',
        client_id,
        adjustment_type.value,
        admin_id,
        change.previous_limit,
        change.new_limit,
    )
    return CreditAdjustmentResult(user=updated, adjustment=adjustment)


def list_credit_limit_adjustments(
    repository: MarketplaceRepository,
    *,
    client_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[CreditLimitAdjustmentRecord]:
    limit = max(1, min(int(limit), 200))
    with repository.unit_of_work() as uow:
        return uow.list_credit_adjustments(client_id=client_id, limit=limit)


def credit_summary_for(user: UserRecord) -> CreditSummary:
    credit_limit = round_money(user.credit_limit or Decimal('0'))
    credit_used = round_money(user.credit_used or Decimal('0'))
    return CreditSummary(
        client_id=user.id,
        credit_limit=credit_limit,
        credit_used=credit_used,
        credit_available=max(Decimal('0.00'), credit_limit - credit_used),
    )


def get_credit_summary(repository: MarketplaceRepository, *, client_id: str) -> CreditSummary:
    with repository.unit_of_work() as uow:
        user = uow.get_user(client_id)
    if user is None or user.role != UserRole.CLIENT:
        raise NotFoundError('Client', client_id)
    return credit_summary_for(user)
