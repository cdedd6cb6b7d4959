from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from app.models import OrderStatus, PaymentAuditAction, UserRole
from app.services.records import AuthEventRecord, PaymentAuditLogRecord
from app.services.repository import MarketplaceUnit


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def log_auth_event(
    uow: MarketplaceUnit,
    *,
    attempted_email: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    user_id: str | None = None,
    failure_reason: str | None = None,
) -> None:
    uow.add_auth_event(
        AuthEventRecord(
            id=str(uuid4()),
            attempted_email=attempted_email,
            success=success,
            failure_reason=failure_reason,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            created_at=_now(),
        )
    )


def log_payment_audit(
    uow: MarketplaceUnit,
    *,
    order_id: str,
    actor_user_id: str | None,
    actor_role: UserRole | None,
    action: PaymentAuditAction,
    from_status: OrderStatus | None,
    to_status: OrderStatus | None,
    payment_reference: str | None,
    notes: str | None = None,
    metadata: dict | None = None,
) -> PaymentAuditLogRecord:
    return uow.add_payment_audit_log(
        PaymentAuditLogRecord(
            id=str(uuid4()),
            order_id=order_id,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            action=action,
            from_status=from_status,
            to_status=to_status,
            payment_reference=payment_reference,
            notes=notes,
            metadata=metadata or {},
            created_at=_now(),
        )
    )
