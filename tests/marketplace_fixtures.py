from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from apscheduler.schedulers.background import BackgroundScheduler

from app.models import OrderStatus, PaymentMethod, PaymentStatus, QuoteStatus, UserRole
from app.services.memory_repository import InMemoryRepository
from app.services.records import (
    OrderRecord,
    PaymentRecord,
    ProductRecord,
    QuoteRecord,
    RFQItem,
    RFQRecord,
    UserRecord,
)

ADMIN_ID = 'admin-1'
CLIENT_ID = 'client-1'
OTHER_CLIENT_ID = 'client-2'
SUPPLIER_ID = 'supplier-1'
ORDER_ID = 'order-1'
QUOTE_ID = 'quote-1'
RFQ_ID = 'rfq-1'
GLOVES_ID = 'product-gloves'
HELMET_ID = 'product-helmet'
CARD_PAYMENT_ID = 'payment-card'
GATEWAY_PAYMENT_ID = 'pay_test_1'

ORDER_DATE = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def paused_scheduler() -> BackgroundScheduler:
    """A running scheduler that never fires, so tests can inspect and trigger jobs."""
    scheduler = BackgroundScheduler(timezone=timezone.utc)
    scheduler.start(paused=True)
    return scheduler


def seed_marketplace(
    repository=None,
    *,
    order_status: OrderStatus = OrderStatus.PENDING_PAYMENT,
    credit_limit: Decimal = Decimal('1000.00'),
    password_hash: str = 'not-a-real-hash',
):
    repository = repository or InMemoryRepository()
    with repository.unit_of_work() as uow:
        uow.save_user(
            UserRecord(id=ADMIN_ID, email='admin@example.com', name='Ada Admin', role=UserRole.ADMIN, password_hash=password_hash)
        )
        uow.save_user(
            UserRecord(
                id=CLIENT_ID,
                email='client@example.com',
                name='Cora Client',
                role=UserRole.CLIENT,
                password_hash=password_hash,
                company_name='Cora Trading',
                credit_limit=credit_limit,
                credit_used=Decimal('250.00'),
            )
        )
        uow.save_user(
            UserRecord(
                id=OTHER_CLIENT_ID,
                email='other@example.com',
                name='Otto Other',
                role=UserRole.CLIENT,
                password_hash=password_hash,
                credit_limit=Decimal('0.00'),
            )
        )
        uow.save_user(
            UserRecord(
                id=SUPPLIER_ID,
                email='supplier@example.com',
                name='Sami Supplier',
                role=UserRole.SUPPLIER,
                password_hash=password_hash,
            )
        )
        uow.save_product(
            ProductRecord(id=GLOVES_ID, supplier_id=SUPPLIER_ID, name='Safety Gloves', stock_quantity=50, cost_price=Decimal('2.00'))
        )
        uow.save_product(
            ProductRecord(id=HELMET_ID, supplier_id=SUPPLIER_ID, name='Hard Hat', stock_quantity=4, cost_price=Decimal('10.00'))
        )
        uow.save_rfq(
            RFQRecord(
                id=RFQ_ID,
                client_id=CLIENT_ID,
                items=(RFQItem(product_id=GLOVES_ID, quantity=30), RFQItem(product_id=HELMET_ID, quantity=2)),
                created_at=ORDER_DATE,
            )
        )
        uow.save_quote(
            QuoteRecord(
                id=QUOTE_ID,
                rfq_id=RFQ_ID,
                supplier_id=SUPPLIER_ID,
                supplier_price=Decimal('1000.00'),
                margin_percent=Decimal('10.00'),
                final_price=Decimal('1100.00'),
                status=QuoteStatus.ACCEPTED,
            )
        )
        uow.save_order(
            OrderRecord(
                id=ORDER_ID,
                client_id=CLIENT_ID,
                supplier_id=SUPPLIER_ID,
                amount=Decimal('1100.00'),
                status=order_status,
                date=ORDER_DATE,
                quote_id=QUOTE_ID,
                payment_reference='EXISTING-REF' if order_status == OrderStatus.AWAITING_CONFIRMATION else None,
            )
        )
    return repository


def add_card_payment(repository, *, amount: Decimal = Decimal('1100.00'), status: PaymentStatus = PaymentStatus.PAID):
    with repository.unit_of_work() as uow:
        return uow.save_payment(
            PaymentRecord(
                id=CARD_PAYMENT_ID,
                order_id=ORDER_ID,
                client_id=CLIENT_ID,
                amount=amount,
                payment_method=PaymentMethod.CREDITCARD,
                status=status,
                moyasar_payment_id=GATEWAY_PAYMENT_ID,
                created_at=ORDER_DATE,
                updated_at=ORDER_DATE,
            )
        )
