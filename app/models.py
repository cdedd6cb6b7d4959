from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    ADMIN = 'ADMIN'
    CLIENT = 'CLIENT'
    SUPPLIER = 'SUPPLIER'


class OrderStatus(str, Enum):
    PENDING_ADMIN_CONFIRMATION = 'PENDING_ADMIN_CONFIRMATION'
    CONFIRMED = 'CONFIRMED'
    PENDING_PAYMENT = 'PENDING_PAYMENT'
    AWAITING_CONFIRMATION = 'AWAITING_CONFIRMATION'
    PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED'
    PROCESSING = 'PROCESSING'
    READY_FOR_PICKUP = 'READY_FOR_PICKUP'
    PICKUP_SCHEDULED = 'PICKUP_SCHEDULED'
    PICKED_UP = 'PICKED_UP'
    OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY'
    SHIPPED = 'SHIPPED'
    IN_TRANSIT = 'IN_TRANSIT'
    DELIVERED = 'DELIVERED'
    COMPLETED = 'COMPLETED'
    DISPUTED = 'DISPUTED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'


class PaymentStatus(str, Enum):
    PENDING = 'PENDING'
    AUTHORIZED = 'AUTHORIZED'
    CAPTURED = 'CAPTURED'
    PAID = 'PAID'
    PARTIALLY_REFUNDED = 'PARTIALLY_REFUNDED'
    REFUNDED = 'REFUNDED'
    FAILED = 'FAILED'
    CANCELLED = 'CANCELLED'
    AWAITING_CONFIRMATION = 'AWAITING_CONFIRMATION'
    CONFIRMED = 'CONFIRMED'
    REJECTED = 'REJECTED'


class PaymentMethod(str, Enum):
    CREDITCARD = 'CREDITCARD'
    MADA = 'MADA'
    APPLEPAY = 'APPLEPAY'
    STC_PAY = 'STC_PAY'
    BANK_TRANSFER = 'BANK_TRANSFER'


class PaymentAuditAction(str, Enum):
    REFERENCE_SUBMITTED = 'REFERENCE_SUBMITTED'
    REFERENCE_RESUBMITTED = 'REFERENCE_RESUBMITTED'
    PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED'
    PAYMENT_REJECTED = 'PAYMENT_REJECTED'


class CreditLimitAdjustmentType(str, Enum):
    SET = 'SET'
    INCREASE = 'INCREASE'
    DECREASE = 'DECREASE'


class PayoutStatus(str, Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    PAID = 'PAID'
    FAILED = 'FAILED'


class OrderDocumentType(str, Enum):
    SYSTEM_PO = 'SYSTEM_PO'
    CLIENT_PO = 'CLIENT_PO'


class QuoteStatus(str, Enum):
    PENDING_ADMIN = 'PENDING_ADMIN'
    SENT_TO_CLIENT = 'SENT_TO_CLIENT'
    ACCEPTED = 'ACCEPTED'
    REJECTED = 'REJECTED'


class RFQStatus(str, Enum):
    OPEN = 'OPEN'
    QUOTED = 'QUOTED'
    CLOSED = 'CLOSED'


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        UniqueConstraint('email', name='users_email_key'),
        CheckConstraint('credit_limit IS NULL OR credit_limit >= 0', name='users_credit_limit_non_negative_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole, name='user_role'), nullable=False)
    company_name: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    credit_limit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    credit_used: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    client_margin: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('stock_quantity >= 0', name='products_stock_non_negative_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='unit', server_default='unit')
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))


class RFQ(Base):
    __tablename__ = 'rfqs'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[RFQStatus] = mapped_column(SQLEnum(RFQStatus, name='rfq_status'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Quote(Base):
    __tablename__ = 'quotes'
    __table_args__ = (
        CheckConstraint('margin_percent >= 0 AND margin_percent <= 100', name='quotes_margin_range_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rfq_id: Mapped[str] = mapped_column(String(64), ForeignKey('rfqs.id'), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    supplier_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    margin_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    final_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    lead_time: Mapped[str | None] = mapped_column(Text)
    status: Mapped[QuoteStatus] = mapped_column(SQLEnum(QuoteStatus, name='quote_status'), nullable=False)


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('payment_reference', name='orders_payment_reference_key'),
        CheckConstraint(
            "status <> 'AWAITING_CONFIRMATION' OR (payment_reference IS NOT NULL AND payment_reference <> '')",
            name='orders_awaiting_requires_reference_ck',
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    quote_id: Mapped[str | None] = mapped_column(String(64), ForeignKey('quotes.id'))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='SAR', server_default='SAR')
    status: Mapped[OrderStatus] = mapped_column(SQLEnum(OrderStatus, name='order_status'), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    payment_reference: Mapped[str | None] = mapped_column(Text)
    payment_notes: Mapped[str | None] = mapped_column(Text)
    payment_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_confirmed_by: Mapped[str | None] = mapped_column(String(64), ForeignKey('users.id'))
    payment_link_url: Mapped[str | None] = mapped_column(Text)
    payment_link_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    system_po_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    client_po_uploaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    client_po_confirmation_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    not_test_order_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_terms_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    admin_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Payment(Base):
    __tablename__ = 'payments'
    __table_args__ = (
        CheckConstraint('amount > 0', name='payments_amount_positive_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.id'), nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='SAR', server_default='SAR')
    payment_method: Mapped[PaymentMethod] = mapped_column(SQLEnum(PaymentMethod, name='payment_method'), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(SQLEnum(PaymentStatus, name='payment_status'), nullable=False)
    moyasar_payment_id: Mapped[str | None] = mapped_column(Text)
    moyasar_transaction_url: Mapped[str | None] = mapped_column(Text)
    card_last_four: Mapped[str | None] = mapped_column(String(4))
    card_brand: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    authorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Refund(Base):
    __tablename__ = 'refunds'
    __table_args__ = (
        CheckConstraint('amount > 0', name='refunds_amount_positive_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payment_id: Mapped[str] = mapped_column(String(64), ForeignKey('payments.id'), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.id'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(SQLEnum(PaymentStatus, name='payment_status'), nullable=False)
    processed_by: Mapped[str | None] = mapped_column(String(64), ForeignKey('users.id'))
    moyasar_refund_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CreditLimitAdjustment(Base):
    __tablename__ = 'credit_limit_adjustments'
    __table_args__ = (
        CheckConstraint('new_limit >= 0', name='credit_limit_adjustments_new_limit_ck'),
        CheckConstraint('length(reason) >= 5', name='credit_limit_adjustments_reason_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    admin_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    adjustment_type: Mapped[CreditLimitAdjustmentType] = mapped_column(
        SQLEnum(CreditLimitAdjustmentType, name='credit_limit_adjustment_type'), nullable=False
    )
    adjustment_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    change_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    previous_limit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    new_limit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SupplierPayout(Base):
    __tablename__ = 'supplier_payouts'
    __table_args__ = (
        CheckConstraint('amount > 0', name='supplier_payouts_amount_positive_ck'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.id'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='SAR', server_default='SAR')
    status: Mapped[PayoutStatus] = mapped_column(SQLEnum(PayoutStatus, name='payout_status'), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(64), ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentAuditLog(Base):
    __tablename__ = 'payment_audit_logs'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.id'), nullable=False)
    actor_user_id: Mapped[str | None] = mapped_column(String(64), ForeignKey('users.id'))
    actor_role: Mapped[UserRole | None] = mapped_column(SQLEnum(UserRole, name='user_role'))
    action: Mapped[PaymentAuditAction] = mapped_column(SQLEnum(PaymentAuditAction, name='payment_audit_action'), nullable=False)
    from_status: Mapped[OrderStatus | None] = mapped_column(SQLEnum(OrderStatus, name='order_status'))
    to_status: Mapped[OrderStatus | None] = mapped_column(SQLEnum(OrderStatus, name='order_status'))
    payment_reference: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderDocument(Base):
    __tablename__ = 'order_documents'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.id'), nullable=False)
    document_type: Mapped[OrderDocumentType] = mapped_column(
        SQLEnum(OrderDocumentType, name='order_document_type'), nullable=False
    )
    file_ref: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(64), ForeignKey('users.id'), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    attempted_email: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(String(64), ForeignKey('users.id'))
    ip: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    session_token: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
