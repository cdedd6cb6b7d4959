from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from apscheduler.schedulers.background import BackgroundScheduler

from app.errors import ConflictError, MarketplaceError, NotFoundError
from app.models import CreditLimitAdjustmentType, OrderDocumentType, OrderStatus, PayoutStatus
from app.services import (
    bank_transfer_service,
    credit_limit_service,
    inventory_service,
    order_status_service,
    payment_service,
    payout_service,
    po_flow_service,
    pricing_service,
)
from app.services.document_storage import DocumentStorage
from app.services.notification_service import Notification, NotificationLog
from app.services.payment_gateway import PaymentGateway
from app.services.payment_review_service import confirm_review, open_payment_review, reject_review
from app.services.po_flow_service import GeneratedPurchaseOrder, POFlowStep, derive_step
from app.services.records import (
    CreditLimitAdjustmentRecord,
    OrderRecord,
    PaymentAuditLogRecord,
    PaymentRecord,
    ProductRecord,
    QuoteRecord,
    RefundRecord,
    SupplierPayoutRecord,
    UserRecord,
)
from app.services.repository import MarketplaceRepository
from app.services.session_expiry_service import SessionExpiryScheduler

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _by_date(orders: Iterable[OrderRecord]) -> list[OrderRecord]:
    return sorted(orders, key=lambda order: order.date, reverse=True)


class MarketplaceStore:
    """
    Process-wide cache of marketplace entities.

    Every action goes through a service and a repository unit of work, then
    replaces the cached entity with the record the repository returned. A
    failed action leaves the cache untouched. Reads are served from the cache;
    ``load_all`` is the only full refresh.
    """

    def __init__(
        self,
        repository: MarketplaceRepository,
        *,
        storage: DocumentStorage,
        gateway: PaymentGateway,
        notifications: NotificationLog | None = None,
        session_warning_lead: timedelta = timedelta(minutes=10),
        scheduler: BackgroundScheduler | None = None,
        vat_rate_percent: Decimal = Decimal('15'),
        po_upload_max_bytes: int = po_flow_service.DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.gateway = gateway
        self.notifications = notifications or NotificationLog()
        self.vat_rate_percent = vat_rate_percent
        self.po_upload_max_bytes = po_upload_max_bytes
        self.session_reminders = SessionExpiryScheduler(
            lead=session_warning_lead,
            on_warn=self._warn_session_expiry,
            scheduler=scheduler,
        )

        self._lock = threading.RLock()
        self._reviews_in_flight: set[str] = set()
        self.users: dict[str, UserRecord] = {}
        self.orders: dict[str, OrderRecord] = {}
        self.payments: dict[str, PaymentRecord] = {}
        self.quotes: dict[str, QuoteRecord] = {}
        self.products: dict[str, ProductRecord] = {}
        self.payouts: dict[str, SupplierPayoutRecord] = {}
        self.credit_adjustments: dict[str, CreditLimitAdjustmentRecord] = {}

    # cache plumbing

    def load_all(self) -> None:
        with self.repository.unit_of_work() as uow:
            users = uow.list_users()
            orders = uow.list_orders()
            payments = uow.list_payments()
            quotes = uow.list_quotes()
            products = uow.list_products()
            payouts = uow.list_payouts()
            adjustments = uow.list_credit_adjustments()
        with self._lock:
            self.users = {row.id: row for row in users}
            self.orders = {row.id: row for row in orders}
            self.payments = {row.id: row for row in payments}
            self.quotes = {row.id: row for row in quotes}
            self.products = {row.id: row for row in products}
            self.payouts = {row.id: row for row in payouts}
            self.credit_adjustments = {row.id: row for row in adjustments}
        logger.info('Store loaded: %s users, %s orders, %s payments', len(users), len(orders), len(payments))

    def _put(self, cache: dict, *records) -> None:
        with self._lock:
            for record in records:
                if record is not None:
                    cache[record.id] = record

    @contextmanager
    def _action(self, name: str, **context) -> Iterator[None]:
        try:
            yield
        except MarketplaceError as exc:
            logger.warning('%s failed %s: %s', name, context, exc)
            raise
        except Exception:
            logger.exception('%s failed %s', name, context)
            raise

    @contextmanager
    def _review_slot(self, order_id: str) -> Iterator[None]:
        with self._lock:
            if order_id in self._reviews_in_flight:
                raise ConflictError(f'A payment review is already in progress for order {order_id}')
            self._reviews_in_flight.add(order_id)
        try:
            yield
        finally:
            with self._lock:
                self._reviews_in_flight.discard(order_id)

    def _notify(self, user_id: str | None, *, type: str, title: str, message: str, action_url: str | None = None):
        if user_id:
            self.notifications.notify(user_id=user_id, type=type, title=title, message=message, action_url=action_url)

    def refresh_client(self, client_id: str) -> None:
        with self.repository.unit_of_work() as uow:
            orders = uow.list_orders(client_id=client_id)
            payments = uow.list_payments(client_id=client_id)
        self._put(self.orders, *orders)
        self._put(self.payments, *payments)

    def _refresh_client_quietly(self, client_id: str) -> None:
        try:
            self.refresh_client(client_id)
        except Exception:
            logger.warning('Refresh after write failed for client %s', client_id, exc_info=True)

    # reads

    def get_user(self, user_id: str) -> UserRecord:
        with self._lock:
            user = self.users.get(user_id)
        if user is not None:
            return user
        with self.repository.unit_of_work() as uow:
            user = uow.get_user(user_id)
        if user is None:
            raise NotFoundError('User', user_id)
        self._put(self.users, user)
        return user

    def list_users(self, *, role=None) -> list[UserRecord]:
        with self._lock:
            rows = list(self.users.values())
        return sorted((row for row in rows if role is None or row.role == role), key=lambda row: row.email)

    def get_order(self, order_id: str) -> OrderRecord:
        with self._lock:
            order = self.orders.get(order_id)
        if order is not None:
            return order
        with self.repository.unit_of_work() as uow:
            order = uow.get_order(order_id)
        if order is None:
            raise NotFoundError('Order', order_id)
        self._put(self.orders, order)
        return order

    def list_orders(
        self,
        *,
        client_id: str | None = None,
        supplier_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[OrderRecord]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = list(self.orders.values())
        return _by_date(
            row
            for row in rows
            if (client_id is None or row.client_id == client_id)
            and (supplier_id is None or row.supplier_id == supplier_id)
            and (wanted is None or row.status in wanted)
        )

    def list_payments(self, *, client_id: str | None = None, order_id: str | None = None) -> list[PaymentRecord]:
        with self._lock:
            rows = list(self.payments.values())
        return [
            row
            for row in rows
            if (client_id is None or row.client_id == client_id) and (order_id is None or row.order_id == order_id)
        ]

    def list_payouts(self, *, supplier_id: str | None = None) -> list[SupplierPayoutRecord]:
        with self._lock:
            rows = list(self.payouts.values())
        return sorted(
            (row for row in rows if supplier_id is None or row.supplier_id == supplier_id),
            key=lambda row: row.created_at or _EPOCH,
            reverse=True,
        )

    def list_products(self, *, supplier_id: str | None = None) -> list[ProductRecord]:
        with self._lock:
            rows = list(self.products.values())
        return sorted(
            (row for row in rows if supplier_id is None or row.supplier_id == supplier_id),
            key=lambda row: row.name.lower(),
        )

    def po_flow_step(self, order_id: str) -> POFlowStep:
        return derive_step(self.get_order(order_id))

    def payment_statistics(self) -> dict:
        return bank_transfer_service.payment_statistics(self.list_orders())

    def client_payment_stats(self, client_id: str) -> dict:
        return payment_service.client_payment_stats(self.list_payments(client_id=client_id))

    # bank transfer and payment review

    def submit_payment_reference(
        self,
        *,
        order_id: str,
        client_id: str,
        reference: str | None = None,
        notes: str | None = None,
    ) -> OrderRecord:
        if reference is None or not reference.strip():
            reference = bank_transfer_service.generate_payment_reference(order_id)
        with self._action('submit_payment_reference', order_id=order_id):
            outcome = bank_transfer_service.submit_payment_reference(
                self.repository,
                order_id=order_id,
                client_id=client_id,
                reference=reference,
                notes=notes,
            )
        self._put(self.orders, outcome.order)
        self._put(self.payments, outcome.payment)
        self._refresh_client_quietly(client_id)
        self._notify(
            client_id,
            type='payment',
            title='Payment reference submitted',
            message=f'Reference {outcome.order.payment_reference} is awaiting confirmation.',
            action_url=f'/client/orders/{order_id}',
        )
        return outcome.order

    def confirm_payment(
        self,
        *,
        order_id: str,
        admin_id: str,
        reference: str | None = None,
        notes: str | None = None,
        expected_status: OrderStatus | None = None,
    ) -> OrderRecord:
        with self._review_slot(order_id), self._action('confirm_payment', order_id=order_id):
            review = self._open_review(order_id, expected_status)
            review.reference = (reference or '').strip() or review.reference
            review.notes = notes or ''
            outcome = confirm_review(self.repository, review, admin_id=admin_id)
        self._put(self.orders, outcome.order)
        self._put(self.payments, outcome.payment)
        self._notify(
            outcome.order.client_id,
            type='payment',
            title='Payment confirmed',
            message=f'Your payment for order {order_id} has been confirmed.',
            action_url=f'/client/orders/{order_id}',
        )
        return outcome.order

    def reject_payment(
        self,
        *,
        order_id: str,
        admin_id: str,
        reason: str,
        expected_status: OrderStatus | None = None,
    ) -> OrderRecord:
        with self._review_slot(order_id), self._action('reject_payment', order_id=order_id):
            review = self._open_review(order_id, expected_status)
            review.notes = reason or ''
            outcome = reject_review(self.repository, review, admin_id=admin_id)
        self._put(self.orders, outcome.order)
        self._put(self.payments, outcome.payment)
        self._notify(
            outcome.order.client_id,
            type='payment',
            title='Payment reference rejected',
            message=f'Your payment reference for order {order_id} was rejected: {reason.strip()}',
            action_url=f'/client/orders/{order_id}',
        )
        return outcome.order

    def _open_review(self, order_id: str, expected_status: OrderStatus | None):
        with self.repository.unit_of_work() as uow:
            order = uow.get_order(order_id)
        if order is None:
            raise NotFoundError('Order', order_id)
        if expected_status is not None and order.status != expected_status:
            raise ConflictError(
                f'Order {order_id} changed to {order.status.value} since the review was opened ({expected_status.value})'
            )
        return open_payment_review(order)

    def set_payment_link(self, *, order_id: str, payment_link_url: str) -> OrderRecord:
        with self._action('set_payment_link', order_id=order_id):
            order = bank_transfer_service.set_payment_link(
                self.repository, order_id=order_id, payment_link_url=payment_link_url
            )
        self._put(self.orders, order)
        self._notify(
            order.client_id,
            type='payment',
            title='Payment link available',
            message=f'A payment link has been sent for order {order_id}.',
            action_url=order.payment_link_url,
        )
        return order

    def payment_audit_logs(self, order_id: str) -> list[PaymentAuditLogRecord]:
        return bank_transfer_service.get_payment_audit_logs(self.repository, order_id=order_id)

    def change_order_status(self, *, order_id: str, status: OrderStatus) -> OrderRecord:
        with self._action('change_order_status', order_id=order_id, status=status.value):
            order = order_status_service.change_order_status(self.repository, order_id=order_id, status=status)
        self._put(self.orders, order)
        self._notify(
            order.client_id,
            type='order',
            title='Order updated',
            message=f'Order {order_id} is now {order.status.value}.',
            action_url=f'/client/orders/{order_id}',
        )
        return order

    # purchase order flow

    def submit_po_confirmation(
        self,
        *,
        order_id: str,
        client_id: str,
        not_test_order: bool,
        payment_terms_accepted: bool,
    ) -> OrderRecord:
        with self._action('submit_po_confirmation', order_id=order_id):
            order = po_flow_service.submit_po_confirmation(
                self.repository,
                order_id=order_id,
                client_id=client_id,
                not_test_order=not_test_order,
                payment_terms_accepted=payment_terms_accepted,
            )
        self._put(self.orders, order)
        self._notify(
            client_id,
            type='order',
            title='PO confirmation submitted',
            message=f'Download the purchase order for order {order_id} to continue.',
            action_url=f'/client/orders/{order_id}/po-flow',
        )
        return order

    def generate_system_po(self, *, order_id: str, client_id: str) -> GeneratedPurchaseOrder:
        with self._action('generate_system_po', order_id=order_id):
            generated = po_flow_service.generate_system_po(
                self.repository,
                self.storage,
                order_id=order_id,
                client_id=client_id,
                vat_rate_percent=self.vat_rate_percent,
            )
        self._put(self.orders, generated.order)
        return generated

    def upload_client_po(
        self,
        *,
        order_id: str,
        client_id: str,
        file_name: str,
        content_type: str | None,
        content: bytes,
    ) -> OrderRecord:
        with self._action('upload_client_po', order_id=order_id):
            uploaded = po_flow_service.upload_client_po(
                self.repository,
                self.storage,
                order_id=order_id,
                client_id=client_id,
                file_name=file_name,
                content_type=content_type,
                content=content,
                max_bytes=self.po_upload_max_bytes,
            )
        self._put(self.orders, uploaded.order)
        self._notify(
            client_id,
            type='order',
            title='Purchase order uploaded',
            message=f'Your signed PO for order {order_id} is pending admin confirmation.',
            action_url=f'/client/orders/{order_id}',
        )
        return uploaded.order

    def verify_client_po(self, *, order_id: str, admin_id: str) -> OrderRecord:
        with self._action('verify_client_po', order_id=order_id):
            order = po_flow_service.verify_client_po(self.repository, order_id=order_id, admin_id=admin_id)
            with self.repository.unit_of_work() as uow:
                products = uow.list_products(supplier_id=order.supplier_id)
        self._put(self.orders, order)
        self._put(self.products, *products)
        self._notify(
            order.client_id,
            type='order',
            title='Purchase order verified',
            message=f'Order {order_id} is ready for payment.',
            action_url=f'/client/orders/{order_id}',
        )
        return order

    def read_order_document(self, *, order_id: str, document_type: OrderDocumentType):
        return po_flow_service.read_order_document(
            self.repository, self.storage, order_id=order_id, document_type=document_type
        )

    # credit ledger

    def adjust_client_credit_limit(
        self,
        *,
        client_id: str,
        admin_id: str,
        adjustment_type: CreditLimitAdjustmentType,
        amount,
        reason: str,
    ) -> credit_limit_service.CreditAdjustmentResult:
        with self._action('adjust_client_credit_limit', client_id=client_id):
            result = credit_limit_service.adjust_client_credit_limit(
                self.repository,
                client_id=client_id,
                admin_id=admin_id,
                adjustment_type=adjustment_type,
                amount=amount,
                reason=reason,
            )
        self._put(self.users, result.user)
        self._put(self.credit_adjustments, result.adjustment)
        self._notify(
            client_id,
            type='credit',
            title='Credit limit updated',
            message=f'Your credit limit is now {result.adjustment.new_limit}.',
        )
        return result

    def credit_limit_history(self, *, client_id: str, limit: int = 25) -> list[CreditLimitAdjustmentRecord]:
        return credit_limit_service.list_credit_limit_adjustments(self.repository, client_id=client_id, limit=limit)

    def credit_summary(self, client_id: str) -> credit_limit_service.CreditSummary:
        return credit_limit_service.credit_summary_for(self.get_user(client_id))

    # payments, refunds and payouts

    def process_refund(self, *, payment_id: str, amount, reason: str, processed_by: str) -> RefundRecord:
        try:
            with self._action('process_refund', payment_id=payment_id):
                refund = payment_service.process_refund(
                    self.repository,
                    self.gateway,
                    payment_id=payment_id,
                    amount=amount,
                    reason=reason,
                    processed_by=processed_by,
                )
        finally:
            self._refresh_payment_quietly(payment_id)
        with self._lock:
            payment = self.payments.get(payment_id)
        if payment is not None:
            self._notify(
                payment.client_id,
                type='payment',
                title='Refund processed',
                message=f'A refund of {refund.amount} {payment.currency} has been issued.',
            )
        return refund

    def _refresh_payment_quietly(self, payment_id: str) -> None:
        try:
            with self.repository.unit_of_work() as uow:
                payment = uow.get_payment(payment_id)
        except Exception:
            logger.warning('Refresh of payment %s failed', payment_id, exc_info=True)
            return
        self._put(self.payments, payment)

    def sync_payment(self, payment_id: str) -> PaymentRecord:
        with self._action('sync_payment', payment_id=payment_id):
            payment = payment_service.sync_gateway_status(self.repository, self.gateway, payment_id=payment_id)
        self._put(self.payments, payment)
        return payment

    def record_supplier_payout(self, **kwargs) -> SupplierPayoutRecord:
        with self._action('record_supplier_payout', order_id=kwargs.get('order_id')):
            payout = payout_service.record_supplier_payout(self.repository, **kwargs)
        self._put(self.payouts, payout)
        self._notify(
            payout.supplier_id,
            type='payout',
            title='Payout scheduled',
            message=f'A payout of {payout.amount} {payout.currency} for order {payout.order_id} is pending.',
        )
        return payout

    def update_payout_status(
        self,
        *,
        payout_id: str,
        status: PayoutStatus,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> SupplierPayoutRecord:
        with self._action('update_payout_status', payout_id=payout_id, status=status.value):
            payout = payout_service.update_payout_status(
                self.repository,
                payout_id=payout_id,
                status=status,
                reference_number=reference_number,
                notes=notes,
            )
        self._put(self.payouts, payout)
        self._notify(
            payout.supplier_id,
            type='payout',
            title='Payout updated',
            message=f'Payout for order {payout.order_id} is now {payout.status.value}.',
        )
        return payout

    # pricing and inventory

    def apply_quote_margin(self, *, quote_id: str, margin_percent) -> QuoteRecord:
        with self._action('apply_quote_margin', quote_id=quote_id):
            quote = pricing_service.apply_quote_margin(self.repository, quote_id=quote_id, margin_percent=margin_percent)
        self._put(self.quotes, quote)
        return quote

    def apply_rfq_margin(self, *, rfq_id: str, margin_percent) -> list[QuoteRecord]:
        with self._action('apply_rfq_margin', rfq_id=rfq_id):
            quotes = pricing_service.apply_rfq_margin(self.repository, rfq_id=rfq_id, margin_percent=margin_percent)
        self._put(self.quotes, *quotes)
        return quotes

    def set_client_margin(self, *, client_id: str, margin_percent) -> UserRecord:
        with self._action('set_client_margin', client_id=client_id):
            user = pricing_service.set_client_margin(self.repository, client_id=client_id, margin_percent=margin_percent)
        self._put(self.users, user)
        return user

    def adjust_stock(self, **kwargs) -> inventory_service.StockChange:
        with self._action('adjust_stock', product_id=kwargs.get('product_id')):
            change = inventory_service.adjust_stock(self.repository, **kwargs)
        self._put(self.products, change.product)
        return change

    def inventory_summary(self, supplier_id: str) -> dict:
        return inventory_service.inventory_summary(self.list_products(supplier_id=supplier_id))

    # notifications and session reminders

    def list_notifications(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        return self.notifications.list_for(user_id, unread_only=unread_only)

    def mark_notification_read(self, user_id: str, notification_id: str) -> None:
        if not self.notifications.mark_read(user_id, notification_id):
            raise NotFoundError('Notification', notification_id)

    def mark_all_notifications_read(self, user_id: str) -> int:
        return self.notifications.mark_all_read(user_id)

    def session_started(self, user_id: str, expires_at: datetime | None) -> bool:
        return self.session_reminders.schedule(user_id, expires_at)

    def session_ended(self, user_id: str) -> None:
        self.session_reminders.cancel(user_id)

    def _warn_session_expiry(self, user_id: str, expires_at: datetime) -> None:
        self._notify(
            user_id,
            type='session',
            title='Session expiring soon',
            message=f'Your session expires at {expires_at:%H:%M} UTC. Save your work and sign in again.',
        )

    def close(self) -> None:
        self.session_reminders.shutdown()
