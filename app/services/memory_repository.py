from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from app.errors import RepositoryError
from app.models import OrderDocumentType, OrderStatus, UserRole
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
    RFQRecord,
    SupplierPayoutRecord,
    UserRecord,
    WebSessionRecord,
)


TABLES = (
    'users',
    'products',
    'rfqs',
    'quotes',
    'orders',
    'payments',
    'refunds',
    'credit_limit_adjustments',
    'supplier_payouts',
    'payment_audit_logs',
    'order_documents',
    'web_sessions',
    'auth_events',
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _newest_first(rows: Iterable, attr: str) -> list:
    return sorted(rows, key=lambda row: (getattr(row, attr) or _EPOCH, row.id), reverse=True)


class _MemoryUnit:
    def __init__(self, tables: dict[str, dict]) -> None:
        self._tables = tables

    def _rows(self, table: str) -> dict:
        return self._tables[table]

    def get_user(self, user_id: str, *, for_update: bool = False) -> UserRecord | None:
        return self._rows('users').get(user_id)

    def get_user_by_email(self, email: str) -> UserRecord | None:
        wanted = email.strip().lower()
        for user in self._rows('users').values():
            if user.email.lower() == wanted:
                return user
        return None

    def list_users(self, *, role: UserRole | None = None) -> list[UserRecord]:
        users = [user for user in self._rows('users').values() if role is None or user.role == role]
        return sorted(users, key=lambda user: user.email.lower())

    def save_user(self, user: UserRecord) -> UserRecord:
        existing = self.get_user_by_email(user.email)
        if existing and existing.id != user.id:
            raise RepositoryError(f'Email already registered: {user.email}')
        self._rows('users')[user.id] = user
        return user

    def get_product(self, product_id: str, *, for_update: bool = False) -> ProductRecord | None:
        return self._rows('products').get(product_id)

    def list_products(self, *, supplier_id: str | None = None) -> list[ProductRecord]:
        products = [p for p in self._rows('products').values() if supplier_id is None or p.supplier_id == supplier_id]
        return sorted(products, key=lambda product: (product.name.lower(), product.id))

    def save_product(self, product: ProductRecord) -> ProductRecord:
        if product.stock_quantity < 0:
            raise RepositoryError(f'Stock cannot be negative for product {product.id}')
        self._rows('products')[product.id] = product
        return product

    def get_rfq(self, rfq_id: str) -> RFQRecord | None:
        return self._rows('rfqs').get(rfq_id)

    def list_rfqs(self, *, client_id: str | None = None) -> list[RFQRecord]:
        rfqs = [rfq for rfq in self._rows('rfqs').values() if client_id is None or rfq.client_id == client_id]
        return _newest_first(rfqs, 'created_at')

    def save_rfq(self, rfq: RFQRecord) -> RFQRecord:
        self._rows('rfqs')[rfq.id] = rfq
        return rfq

    def get_quote(self, quote_id: str, *, for_update: bool = False) -> QuoteRecord | None:
        return self._rows('quotes').get(quote_id)

    def list_quotes(self, *, rfq_id: str | None = None) -> list[QuoteRecord]:
        quotes = [quote for quote in self._rows('quotes').values() if rfq_id is None or quote.rfq_id == rfq_id]
        return sorted(quotes, key=lambda quote: quote.id)

    def save_quote(self, quote: QuoteRecord) -> QuoteRecord:
        self._rows('quotes')[quote.id] = quote
        return quote

    def get_order(self, order_id: str, *, for_update: bool = False) -> OrderRecord | None:
        return self._rows('orders').get(order_id)

    def list_orders(
        self,
        *,
        client_id: str | None = None,
        supplier_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[OrderRecord]:
        wanted = set(statuses) if statuses is not None else None
        orders = [
            order
            for order in self._rows('orders').values()
            if (client_id is None or order.client_id == client_id)
            and (supplier_id is None or order.supplier_id == supplier_id)
            and (wanted is None or order.status in wanted)
        ]
        return _newest_first(orders, 'date')

    def find_order_by_payment_reference(self, reference: str) -> OrderRecord | None:
        for order in self._rows('orders').values():
            if order.payment_reference == reference:
                return order
        return None

    def save_order(self, order: OrderRecord) -> OrderRecord:
        if order.payment_reference:
            holder = self.find_order_by_payment_reference(order.payment_reference)
            if holder and holder.id != order.id:
                raise RepositoryError(f'Payment reference already in use: {order.payment_reference}')
        if order.status == OrderStatus.AWAITING_CONFIRMATION and not (order.payment_reference or '').strip():
            raise RepositoryError(f'Order {order.id} cannot await confirmation without a payment reference')
        self._rows('orders')[order.id] = order
        return order

    def get_payment(self, payment_id: str, *, for_update: bool = False) -> PaymentRecord | None:
        return self._rows('payments').get(payment_id)

    def list_payments(self, *, order_id: str | None = None, client_id: str | None = None) -> list[PaymentRecord]:
        payments = [
            payment
            for payment in self._rows('payments').values()
            if (order_id is None or payment.order_id == order_id)
            and (client_id is None or payment.client_id == client_id)
        ]
        return _newest_first(payments, 'created_at')

    def save_payment(self, payment: PaymentRecord) -> PaymentRecord:
        self._rows('payments')[payment.id] = payment
        return payment

    def get_refund(self, refund_id: str, *, for_update: bool = False) -> RefundRecord | None:
        return self._rows('refunds').get(refund_id)

    def list_refunds(self, *, payment_id: str | None = None) -> list[RefundRecord]:
        refunds = [r for r in self._rows('refunds').values() if payment_id is None or r.payment_id == payment_id]
        return _newest_first(refunds, 'created_at')

    def save_refund(self, refund: RefundRecord) -> RefundRecord:
        self._rows('refunds')[refund.id] = refund
        return refund

    def delete_refund(self, refund_id: str, *, only_if_status) -> bool:
        refund = self._rows('refunds').get(refund_id)
        if refund is None or refund.status != only_if_status:
            return False
        del self._rows('refunds')[refund_id]
        return True

    def add_credit_adjustment(self, adjustment: CreditLimitAdjustmentRecord) -> CreditLimitAdjustmentRecord:
        rows = self._rows('credit_limit_adjustments')
        if adjustment.id in rows:
            raise RepositoryError(f'Credit limit adjustment already recorded: {adjustment.id}')
        rows[adjustment.id] = adjustment
        return self._with_admin_name(adjustment)

    def _with_admin_name(self, adjustment: CreditLimitAdjustmentRecord) -> CreditLimitAdjustmentRecord:
        admin = self.get_user(adjustment.admin_id)
        return replace(adjustment, admin_name=admin.name if admin else None)

    def list_credit_adjustments(
        self, *, client_id: str | None = None, limit: int | None = None
    ) -> list[CreditLimitAdjustmentRecord]:
        adjustments = [
            adj
            for adj in self._rows('credit_limit_adjustments').values()
            if client_id is None or adj.client_id == client_id
        ]
        ordered = _newest_first(adjustments, 'created_at')
        if limit is not None:
            ordered = ordered[:limit]
        return [self._with_admin_name(adj) for adj in ordered]

    def get_payout(self, payout_id: str, *, for_update: bool = False) -> SupplierPayoutRecord | None:
        return self._rows('supplier_payouts').get(payout_id)

    def list_payouts(self, *, supplier_id: str | None = None) -> list[SupplierPayoutRecord]:
        payouts = [
            payout
            for payout in self._rows('supplier_payouts').values()
            if supplier_id is None or payout.supplier_id == supplier_id
        ]
        return _newest_first(payouts, 'created_at')

    def save_payout(self, payout: SupplierPayoutRecord) -> SupplierPayoutRecord:
        self._rows('supplier_payouts')[payout.id] = payout
        return payout

    def add_payment_audit_log(self, entry: PaymentAuditLogRecord) -> PaymentAuditLogRecord:
        self._rows('payment_audit_logs')[entry.id] = entry
        return entry

    def list_payment_audit_logs(self, *, order_id: str) -> list[PaymentAuditLogRecord]:
        entries = [e for e in self._rows('payment_audit_logs').values() if e.order_id == order_id]
        return _newest_first(entries, 'created_at')

    def add_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord:
        self._rows('order_documents')[document.id] = document
        return document

    def save_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord:
        return self.add_order_document(document)

    def list_order_documents(
        self, *, order_id: str, document_type: OrderDocumentType | None = None
    ) -> list[OrderDocumentRecord]:
        documents = [
            doc
            for doc in self._rows('order_documents').values()
            if doc.order_id == order_id and (document_type is None or doc.document_type == document_type)
        ]
        return _newest_first(documents, 'created_at')

    def create_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord:
        self._rows('web_sessions')[web_session.session_token] = web_session
        return web_session

    def get_web_session(self, token: str) -> WebSessionRecord | None:
        return self._rows('web_sessions').get(token)

    def save_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord:
        return self.create_web_session(web_session)

    def add_auth_event(self, event: AuthEventRecord) -> AuthEventRecord:
        self._rows('auth_events')[event.id] = event
        return event


class InMemoryRepository:
    """
    Process-local backend for demo and offline mode.

    A unit of work holds a re-entrant lock for its whole duration and
    restores the table snapshot taken on entry if the body raises, so writes
    inside one unit land together or not at all.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, dict] = {name: {} for name in TABLES}

    @contextmanager
    def unit_of_work(self) -> Iterator[_MemoryUnit]:
        with self._lock:
            snapshot = {name: dict(rows) for name, rows in self._tables.items()}
            try:
                yield _MemoryUnit(self._tables)
            except BaseException:
                for name, rows in snapshot.items():
                    self._tables[name] = rows
                raise
