from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Protocol

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


class MarketplaceUnit(Protocol):
    """Reads and writes that commit together when the unit of work exits cleanly."""

    def get_user(self, user_id: str, *, for_update: bool = False) -> UserRecord | None: ...

    def get_user_by_email(self, email: str) -> UserRecord | None: ...

    def list_users(self, *, role: UserRole | None = None) -> list[UserRecord]: ...

    def save_user(self, user: UserRecord) -> UserRecord: ...

    def get_product(self, product_id: str, *, for_update: bool = False) -> ProductRecord | None: ...

    def list_products(self, *, supplier_id: str | None = None) -> list[ProductRecord]: ...

    def save_product(self, product: ProductRecord) -> ProductRecord: ...

    def get_rfq(self, rfq_id: str) -> RFQRecord | None: ...

    def list_rfqs(self, *, client_id: str | None = None) -> list[RFQRecord]: ...

    def save_rfq(self, rfq: RFQRecord) -> RFQRecord: ...

    def get_quote(self, quote_id: str, *, for_update: bool = False) -> QuoteRecord | None: ...

    def list_quotes(self, *, rfq_id: str | None = None) -> list[QuoteRecord]: ...

    def save_quote(self, quote: QuoteRecord) -> QuoteRecord: ...

    def get_order(self, order_id: str, *, for_update: bool = False) -> OrderRecord | None: ...

    def list_orders(
        self,
        *,
        client_id: str | None = None,
        supplier_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[OrderRecord]: ...

    def find_order_by_payment_reference(self, reference: str) -> OrderRecord | None: ...

    def save_order(self, order: OrderRecord) -> OrderRecord: ...

    def get_payment(self, payment_id: str, *, for_update: bool = False) -> PaymentRecord | None: ...

    def list_payments(self, *, order_id: str | None = None, client_id: str | None = None) -> list[PaymentRecord]: ...

    def save_payment(self, payment: PaymentRecord) -> PaymentRecord: ...

    def get_refund(self, refund_id: str, *, for_update: bool = False) -> RefundRecord | None: ...

    def list_refunds(self, *, payment_id: str | None = None) -> list[RefundRecord]: ...

    def save_refund(self, refund: RefundRecord) -> RefundRecord: ...

    def delete_refund(self, refund_id: str, *, only_if_status) -> bool: ...

    def add_credit_adjustment(self, adjustment: CreditLimitAdjustmentRecord) -> CreditLimitAdjustmentRecord: ...

    def list_credit_adjustments(
        self, *, client_id: str | None = None, limit: int | None = None
    ) -> list[CreditLimitAdjustmentRecord]: ...

    def get_payout(self, payout_id: str, *, for_update: bool = False) -> SupplierPayoutRecord | None: ...

    def list_payouts(self, *, supplier_id: str | None = None) -> list[SupplierPayoutRecord]: ...

    def save_payout(self, payout: SupplierPayoutRecord) -> SupplierPayoutRecord: ...

    def add_payment_audit_log(self, entry: PaymentAuditLogRecord) -> PaymentAuditLogRecord: ...

    def list_payment_audit_logs(self, *, order_id: str) -> list[PaymentAuditLogRecord]: ...

    def add_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord: ...

    def save_order_document(self, document: OrderDocumentRecord) -> OrderDocumentRecord: ...

    def list_order_documents(
        self, *, order_id: str, document_type: OrderDocumentType | None = None
    ) -> list[OrderDocumentRecord]: ...

    def create_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord: ...

    def get_web_session(self, token: str) -> WebSessionRecord | None: ...

    def save_web_session(self, web_session: WebSessionRecord) -> WebSessionRecord: ...

    def add_auth_event(self, event: AuthEventRecord) -> AuthEventRecord: ...


class MarketplaceRepository(Protocol):
    def unit_of_work(self) -> AbstractContextManager[MarketplaceUnit]: ...
