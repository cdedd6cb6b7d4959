from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.models import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PayoutStatus,
    QuoteStatus,
    RFQStatus,
    UserRole,
)
from app.security.passwords import hash_password
from app.services.payment_gateway import GatewayPayment, MockPaymentGateway, to_halalas
from app.services.records import (
    OrderRecord,
    PaymentRecord,
    ProductRecord,
    QuoteRecord,
    RFQItem,
    RFQRecord,
    SupplierPayoutRecord,
    UserRecord,
)
from app.services.repository import MarketplaceRepository

ADMIN_ID = 'demo-admin'
CLIENT_ID = 'demo-client'
SUPPLIER_ID = 'demo-supplier'
CARD_GATEWAY_PAYMENT_ID = 'pay_demo_0001'


def seed(repository: MarketplaceRepository, *, gateway=None) -> bool:
    """Insert the demo marketplace once. Returns False when it is already present."""
    now = datetime.now(tz=timezone.utc)
    if isinstance(gateway, MockPaymentGateway):
        gateway.register_payment(
            GatewayPayment(
                id=CARD_GATEWAY_PAYMENT_ID,
                status='paid',
                amount_halalas=to_halalas(Decimal('1150.00')),
                card_last_four='4242',
                card_brand='mada',
            )
        )

    with repository.unit_of_work() as uow:
        if uow.get_user_by_email('admin@mwrd.com'):
            return False

        uow.save_user(
            UserRecord(
                id=ADMIN_ID,
                email='admin@mwrd.com',
                name='MWRD Admin',
                role=UserRole.ADMIN,
                password_hash=hash_password('adminpass'),
                created_at=now,
            )
        )
        uow.save_user(
            UserRecord(
                id=CLIENT_ID,
                email='client@mwrd.com',
                name='Demo Client',
                role=UserRole.CLIENT,
                password_hash=hash_password('clientpass'),
                company_name='Demo Trading Co.',
                credit_limit=Decimal('50000.00'),
                credit_used=Decimal('12500.00'),
                client_margin=Decimal('10.00'),
                created_at=now,
            )
        )
        uow.save_user(
            UserRecord(
                id=SUPPLIER_ID,
                email='supplier@mwrd.com',
                name='Demo Supplier',
                role=UserRole.SUPPLIER,
                password_hash=hash_password('supplierpass'),
                company_name='Gulf Industrial Supply',
                created_at=now,
            )
        )

        uow.save_product(
            ProductRecord(
                id='demo-product-gloves',
                supplier_id=SUPPLIER_ID,
                name='Nitrile Safety Gloves',
                sku='GLV-100',
                unit='box',
                stock_quantity=250,
                cost_price=Decimal('18.50'),
            )
        )
        uow.save_product(
            ProductRecord(
                id='demo-product-helmet',
                supplier_id=SUPPLIER_ID,
                name='Hard Hat, Class E',
                sku='HLM-200',
                unit='piece',
                stock_quantity=40,
                cost_price=Decimal('45.00'),
            )
        )
        uow.save_rfq(
            RFQRecord(
                id='demo-rfq-1',
                client_id=CLIENT_ID,
                items=(
                    RFQItem(product_id='demo-product-gloves', quantity=100),
                    RFQItem(product_id='demo-product-helmet', quantity=20, notes='White only'),
                ),
                status=RFQStatus.QUOTED,
                created_at=now - timedelta(days=3),
            )
        )
        uow.save_quote(
            QuoteRecord(
                id='demo-quote-1',
                rfq_id='demo-rfq-1',
                supplier_id=SUPPLIER_ID,
                supplier_price=Decimal('2700.00'),
                margin_percent=Decimal('10.00'),
                final_price=Decimal('2970.00'),
                status=QuoteStatus.ACCEPTED,
                lead_time='5 business days',
            )
        )

        # One order per flow: bank transfer, dual PO, and an already paid card order.
        uow.save_order(
            OrderRecord(
                id='demo-order-bank',
                client_id=CLIENT_ID,
                supplier_id=SUPPLIER_ID,
                amount=Decimal('2970.00'),
                status=OrderStatus.PENDING_PAYMENT,
                date=now - timedelta(days=2),
                quote_id='demo-quote-1',
            )
        )
        uow.save_order(
            OrderRecord(
                id='demo-order-po',
                client_id=CLIENT_ID,
                supplier_id=SUPPLIER_ID,
                amount=Decimal('2970.00'),
                status=OrderStatus.PENDING_PAYMENT,
                date=now - timedelta(days=1),
                quote_id='demo-quote-1',
            )
        )
        uow.save_order(
            OrderRecord(
                id='demo-order-card',
                client_id=CLIENT_ID,
                supplier_id=SUPPLIER_ID,
                amount=Decimal('1150.00'),
                status=OrderStatus.PAYMENT_CONFIRMED,
                date=now - timedelta(days=5),
                quote_id='demo-quote-1',
                payment_confirmed_at=now - timedelta(days=5),
            )
        )
        uow.save_payment(
            PaymentRecord(
                id='demo-payment-card',
                order_id='demo-order-card',
                client_id=CLIENT_ID,
                amount=Decimal('1150.00'),
                payment_method=PaymentMethod.MADA,
                status=PaymentStatus.PAID,
                moyasar_payment_id=CARD_GATEWAY_PAYMENT_ID,
                card_last_four='4242',
                card_brand='mada',
                paid_at=now - timedelta(days=5),
                created_at=now - timedelta(days=5),
                updated_at=now - timedelta(days=5),
            )
        )
        uow.save_payout(
            SupplierPayoutRecord(
                id='demo-payout-1',
                supplier_id=SUPPLIER_ID,
                order_id='demo-order-card',
                amount=Decimal('1035.00'),
                status=PayoutStatus.PENDING,
                payment_method='BANK_TRANSFER',
                created_by=ADMIN_ID,
                created_at=now - timedelta(days=4),
                updated_at=now - timedelta(days=4),
            )
        )

    return True


def main() -> None:
    from app.config import settings
    from app.logging_config import setup_logging
    from app.services.provider_factory import get_payment_gateway, get_repository

    setup_logging()
    if settings.uses_database:
        from app.db import engine
        from app.models import Base

        Base.metadata.create_all(bind=engine)
    inserted = seed(get_repository(), gateway=get_payment_gateway())
    print('Seed data inserted.' if inserted else 'Seed data already present.')


if __name__ == '__main__':
    main()
