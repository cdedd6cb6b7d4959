"""
Immutable snapshots of persisted rows.

Both repository backends accept and return these, so services and the store
never hold a live ORM object. Updates are made with ``dataclasses.replace``
and written back through a unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from app.models import (
    CreditLimitAdjustmentType,
    OrderDocumentType,
    OrderStatus,
    PaymentAuditAction,
    PaymentMethod,
    PaymentStatus,
    PayoutStatus,
    QuoteStatus,
    RFQStatus,
    UserRole,
)


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    name: str
    role: UserRole
    password_hash: str
    company_name: str | None = None
    active: bool = True
    credit_limit: Decimal | None = None
    credit_used: Decimal = Decimal('0.00')
    client_margin: Decimal | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ProductRecord:
    id: str
    supplier_id: str
    name: str
    sku: str | None = None
    description: str | None = None
    unit: str = 'unit'
    stock_quantity: int = 0
    cost_price: Decimal | None = None


@dataclass(frozen=True)
class RFQItem:
    product_id: str
    quantity: int
    notes: str | None = None


@dataclass(frozen=True)
class RFQRecord:
    id: str
    client_id: str
    items: tuple[RFQItem, ...]
    status: RFQStatus = RFQStatus.OPEN
    created_at: datetime | None = None


@dataclass(frozen=True)
class QuoteRecord:
    id: str
    rfq_id: str
    supplier_id: str
    supplier_price: Decimal
    margin_percent: Decimal
    final_price: Decimal
    status: QuoteStatus = QuoteStatus.PENDING_ADMIN
    lead_time: str | None = None


@dataclass(frozen=True)
class OrderRecord:
    id: str
    client_id: str
    supplier_id: str
    amount: Decimal
    status: OrderStatus
    date: datetime
    currency: str = 'SAR'
    quote_id: str | None = None
    payment_reference: str | None = None
    payment_notes: str | None = None
    payment_submitted_at: datetime | None = None
    payment_confirmed_at: datetime | None = None
    payment_confirmed_by: str | None = None
    payment_link_url: str | None = None
    payment_link_sent_at: datetime | None = None
    system_po_generated: bool = False
    client_po_uploaded: bool = False
    client_po_confirmation_submitted_at: datetime | None = None
    not_test_order_confirmed_at: datetime | None = None
    payment_terms_confirmed_at: datetime | None = None
    admin_verified: bool = False
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    order_id: str
    client_id: str
    amount: Decimal
    payment_method: PaymentMethod
    status: PaymentStatus
    currency: str = 'SAR'
    moyasar_payment_id: str | None = None
    moyasar_transaction_url: str | None = None
    card_last_four: str | None = None
    card_brand: str | None = None
    description: str | None = None
    metadata: dict = field(default_factory=dict)
    authorized_at: datetime | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RefundRecord:
    id: str
    payment_id: str
    order_id: str
    amount: Decimal
    reason: str
    status: PaymentStatus
    processed_by: str | None = None
    moyasar_refund_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CreditLimitAdjustmentRecord:
    id: str
    client_id: str
    admin_id: str
    adjustment_type: CreditLimitAdjustmentType
    adjustment_amount: Decimal
    change_amount: Decimal
    previous_limit: Decimal
    new_limit: Decimal
    reason: str
    created_at: datetime
    # Joined from users on read; never persisted.
    admin_name: str | None = None


@dataclass(frozen=True)
class SupplierPayoutRecord:
    id: str
    supplier_id: str
    order_id: str
    amount: Decimal
    status: PayoutStatus
    currency: str = 'SAR'
    payment_method: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    paid_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PaymentAuditLogRecord:
    id: str
    order_id: str
    action: PaymentAuditAction
    created_at: datetime
    actor_user_id: str | None = None
    actor_role: UserRole | None = None
    from_status: OrderStatus | None = None
    to_status: OrderStatus | None = None
    payment_reference: str | None = None
    notes: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class OrderDocumentRecord:
    id: str
    order_id: str
    document_type: OrderDocumentType
    file_ref: str
    file_name: str
    uploaded_by: str
    verified: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class WebSessionRecord:
    session_token: str
    user_id: str
    expires_at: datetime
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    last_seen_at: datetime | None = None
    revoked_at: datetime | None = None


@dataclass(frozen=True)
class AuthEventRecord:
    id: str
    attempted_email: str
    success: bool
    failure_reason: str | None = None
    user_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
