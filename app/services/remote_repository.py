from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import RepositoryError
from app.models import (
    RFQ,
    AuthEvent,
    CreditLimitAdjustment,
    Order,
    OrderDocument,
    OrderDocumentType,
    OrderStatus,
    Payment,
    PaymentAuditLog,
    Product,
    Quote,
    Refund,
    SupplierPayout,
    User,
    UserRole,
    WebSession,
)
from app.services.records import (
    AuthEventRecord,
    CreditLimitAdjustmentRecord,
    OrderDocumentRecord,
    OrderRecord,
    PaymentAuditLogRecord,
    PaymentRecord,
    ProductRecord,
    QuoteRecord,
    RefundRecord,
    RFQItem,
    RFQRecord,
    SupplierPayoutRecord,
    UserRecord,
    WebSessionRecord,
)

logger = logging.getLogger(__name__)

# Record field -> mapped attribute, where they differ.
_ATTRIBUTE_NAMES = {'metadata': 'meta'}
# Left to the column's server default when the record does not carry a value.
_SERVER_DEFAULTED = {'created_at', 'updated_at', 'date'}


def _attribute(field_name: str) -> str:
    return _ATTRIBUTE_NAMES.get(field_name, field_name)


def _as_utc(value):
    # SQLite drops tzinfo on the way back; stored values are always UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row, record_cls):
    values = {}
    for item in fields(record_cls):
        attr = _attribute(item.name)
        if not hasattr(row, attr):
            continue
        value = _as_utc(getattr(row, attr))
        if item.name == 'items' and record_cls is RFQRecord:
            value = tuple(RFQItem(**entry) for entry in (value or []))
        if item.name == 'metadata':
            value = dict(value or {})
        values[item.name] = value
    return record_cls(**values)


def _apply(row, record) -> None:
    for item in fields(record):
        attr = _attribute(item.name)
        if not hasattr(type(row), attr):
            continue
        value = getattr(record, item.name)
        if value is None and item.name in _SERVER_DEFAULTED:
            continue
        if item.name == 'items' and isinstance(record, RFQRecord):
            value = [
                {'product_id': entry.product_id, 'quantity': entry.quantity, 'notes': entry.notes}
                for entry in value
            ]
        setattr(row, attr, value)


class _SqlUnit:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _get(self, model, key, *, for_update: bool = False):
        if for_update:
            pk = model.__mapper__.primary_key[0]
            return self.db.execute(select(model).where(pk == key).with_for_update()).scalar_one_or_none()
        return self.db.get(model, key)

    def _save(self, model, record, key, record_cls):
        row = self.db.get(model, key)
        if row is None:
            row = model()
            self.db.add(row)
        _apply(row, record)
        self.db.flush()
        return _to_record(row, record_cls)

    def _fetch(self, model, key, record_cls, *, for_update: bool = False):
        row = self._get(model, key, for_update=for_update)
        return _to_record(row, record_cls) if row is not None else None

    def _list(self, stmt, record_cls) -> list:
        return [_to_record(row, record_cls) for row in self.db.execute(stmt).scalars().all()]

    def get_user(self, user_id: str, *, for_update: bool = False) -> UserRecord | None:
        return self._fetch(User, user_id, UserRecord, for_update=for_update)

    def get_user_by_email(self, email: str) -> UserRecord | None:
        row = self.db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
        return _to_record(row, UserRecord) if row is not None else None

    def list_users(self, *, role: UserRole | None = None) -> list[UserRecord]:
        stmt = select(User).order_by(User.email.asc())
        if role is not None:
            stmt = stmt.where(User.role == role)
        return self._list(stmt, UserRecord)

    def save_user(self, user: UserRecord) -> UserRecord:
        return self._save(User, user, user.id, UserRecord)

    def get_product(self, product_id: str, *, for_update: bool = False) -> ProductRecord | None:
        return self._fetch(Product, product_id, ProductRecord, for_update=for_update)

    def list_products(self, *, supplier_id: str | None = None) -> list[ProductRecord]:
        stmt = select(Product).order_by(Product.name.asc(), Product.id.asc())
        if supplier_id is not None:
            stmt = stmt.where(Product.supplier_id == supplier_id)
        return self._list(stmt, ProductRecord)

    def save_product(self, product: ProductRecord) -> ProductRecord:
        return self._save(Product, product, product.id, ProductRecord)

    def get_rfq(self, rfq_id: str) -> RFQRecord | None:
        return self._fetch(RFQ, rfq_id, RFQRecord)

    def list_rfqs(self, *, client_id: str | None = None) -> list[RFQRecord]:
        stmt = select(RFQ).order_by(RFQ.created_at.desc(), RFQ.id.desc())
        if client_id is not None:
            stmt = stmt.where(RFQ.client_id == client_id)
        return self._list(stmt, RFQRecord)

    def save_rfq(self, rfq: RFQRecord) -> RFQRecord:
        return self._save(RFQ, rfq, rfq.id, RFQRecord)

    def get_quote(self, quote_id: str, *, for_update: bool = False) -> QuoteRecord | None:
        return self._fetch(Quote, quote_id, QuoteRecord, for_update=for_update)

    def list_quotes(self, *, rfq_id: str | None = None) -> list[QuoteRecord]:
        stmt = select(Quote).order_by(Quote.id.asc())
        if rfq_id is not None:
            stmt = stmt.where(Quote.rfq_id == rfq_id)
        return self._list(stmt, QuoteRecord)

    def save_quote(self, quote: QuoteRecord) -> QuoteRecord:
        return self._save(Quote, quote, quote.id, QuoteRecord)

    def get_order(self, order_id: str, *, for_update: bool = False) -> OrderRecord | None:
        return self._fetch(Order, order_id, OrderRecord, for_update=for_update)

    def list_orders(
        self,
        *,
        client_id: str | None = None,
        supplier_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[OrderRecord]:
        stmt = select(Order).order_by(Order.date.desc(), Order.id.desc())
        if client_id is not None:
            stmt = stmt.where(Order.client_id == client_id)
        if supplier_id is not None:
            stmt = stmt.where(Order.supplier_id == supplier_id)
        if statuses is not None:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        return self._list(stmt, OrderRecord)

    def find_order_by_payment_reference(self, reference: str) -> OrderRecord | None:
        row = self.db.execute(select(Order).where(Order.payment_reference == reference)).scalar_one_or_none()
        return _to_record(row, OrderRecord) if row is not None else None

    def save_order(self, order: OrderRecord) -> OrderRecord:
        return self._save(Order, order, order.id, OrderRecord)

    def get_payment(self, payment_id: str, *, for_update: bool = False) -> PaymentRecord | None:
        return self._fetch(Payment, payment_id, PaymentRecord, for_update=for_update)

    def list_payments(self, *, order_id: str | None = None, client_id: str | None = None) -> list[PaymentRecord]:
        stmt = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
        if order_id is not None:
            stmt = stmt.where(Payment.order_id == order_id)
        if client_id is not None:
            stmt = stmt.where(Payment.client_id == client_id)
        return self._list(stmt, PaymentRecord)

    def save_payment(self, payment: PaymentRecord) -> PaymentRecord:
        return self._save(Payment, payment, payment.id, PaymentRecord)

    def get_refund(self, refund_id: str, *, for_update: bool = False) -> RefundRecord | None:
        return self._fetch(Refund, refund_id, RefundRecord, for_update=for_update)

    def list_refunds(self, *, payment_id: str | None = None) -> list[RefundRecord]:
        stmt = select(Refund).order_by(Refund.created_at.desc(), Refund.id.desc())
        if payment_id is not None:
            stmt = stmt.where(Refund.payment_id == payment_id)
        return self._list(stmt, RefundRecord)

    def save_refund(self, refund: RefundRecord) -> RefundRecord:
        return self._save(Refund, refund, refund.id, RefundRecord)

    def delete_refund(self, refund_id: str, *, only_if_status) -> bool:
        result = self.db.execute(
            delete(Refund).where(Refund.id == refund_id, Refund.status == only_if_status)
        )
        return bool(result.rowcount)

    def add_credit_adjustment(self, adjustment: CreditLimitAdjustmentRecord) -> CreditLimitAdjustmentRecord:
        row = CreditLimitAdjustment()
        _apply(row, adjustment)
        self.db.add(row)
        self.db.flush()
        admin = self.db.get(User, adjustment.admin_id)
        return replace(_to_record(row, CreditLimitAdjustmentRecord), admin_name=admin.name if admin else None)

    def list_credit_adjustments(
        self, *, client_id: str | None = None, limit: int | None = None
    ) -> list[CreditLimitAdjustmentRecord]:
        stmt = (
            select(CreditLimitAdjustment, User.name)
            .outerjoin(User, User.id == CreditLimitAdjustment.admin_id)
            .order_by(CreditLimitAdjustment.created_at.desc(), CreditLimitAdjustment.id.desc())
        )
        if client_id is not None:
            stmt = stmt.where(CreditLimitAdjustment.client_id == client_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            replace(_to_record(row, CreditLimitAdjustmentRecord), admin_name=admin_name)
            for row, admin_name in self.db.execute(stmt).all()
        ]

    def get_payout(self, payout_id: str, *, for_update: bool = False) -> SupplierPayoutRecord | None:
        return self._fetch(SupplierPayout, payout_id, SupplierPayoutRecord, for_update=for_update)

    def list_payouts(self, *, supplier_id: str | None = None) -> list[SupplierPayoutRecord]:
        stmt = select(SupplierPayout).order_by(SupplierPayout.created_at.desc(), SupplierPayout.id.desc())
        if supplier_id is not None:
            stmt = stmt.where(SupplierPayout.supplier_id == supplier_id)
        return self._list(stmt, SupplierPayoutRecord)

    def save_payout(self, payout: SupplierPayoutRecord) -> SupplierPayoutRecord:
        return self._save(SupplierPayout, payout, payout.id, SupplierPayoutRecord)

    def add_payment_audit_log(self, entry: PaymentAuditLogRecord) -> PaymentAuditLogRecord:
        row = PaymentAuditLog()
        _apply(row, entry)
        self.db.add(row)
        self.db.flush()
        return _to_record(row, PaymentAuditLogRecord)

    def list_payment_audit_logs(self, *, order_id: str) -> list[PaymentAuditLogRecord]:
        stmt = (
            select(PaymentAuditLog)
            .where(PaymentAuditLog.order_id == order_id)
            .order_by(PaymentAuditLog.created_at.desc(), PaymentAuditLog.id.desc())
        )
        return self._list(stmt, PaymentAuditLogRecord)

    def add_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord:
        return self._save(OrderDocument, document, document.id, OrderDocumentRecord)

    def save_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord:
        return self._save(OrderDocument, document, document.id, OrderDocumentRecord)

    def list_order_documents(
        self, *, order_id: str, document_type: OrderDocumentType | None = None
    ) -> list[OrderDocumentRecord]:
        stmt = (
            select(OrderDocument)
            .where(OrderDocument.order_id == order_id)
            .order_by(OrderDocument.created_at.desc(), OrderDocument.id.desc())
        )
        if document_type is not None:
            stmt = stmt.where(OrderDocument.document_type == document_type)
        return self._list(stmt, OrderDocumentRecord)

    def create_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord:
        return self._save(WebSession, web_session, web_session.session_token, WebSessionRecord)

    def get_web_session(self, token: str) -> WebSessionRecord | None:
        return self._fetch(WebSession, token, WebSessionRecord)

    def save_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord:
        return self._save(WebSession, web_session, web_session.session_token, WebSessionRecord)

    def add_auth_event(self, event: AuthEventRecord) -> AuthEventRecord:
        row = AuthEvent()
        _apply(row, event)
        self.db.add(row)
        self.db.flush()
        return _to_record(row, AuthEventRecord)


class RemoteRepository:
    """SQLAlchemy backend: one session and one transaction per unit of work."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def unit_of_work(self) -> Iterator[_SqlUnit]:
        db: Session = self._session_factory()
        try:
            with db.begin():
                yield _SqlUnit(db)
        except SQLAlchemyError as exc:
            logger.exception('Database unit of work failed')
            raise RepositoryError(f'Database write failed: {exc.__class__.__name__}') from exc
        finally:
            db.close()
