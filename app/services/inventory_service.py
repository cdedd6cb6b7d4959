from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from app.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.services.records import ProductRecord
from app.services.repository import MarketplaceRepository, MarketplaceUnit

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5


@dataclass(frozen=True)
class StockChange:
    product: ProductRecord
    previous_stock: int
    new_stock: int


def stock_status(quantity: int) -> str:
    if quantity <= 0:
        return 'out_of_stock'
    if quantity <= LOW_STOCK_THRESHOLD:
        return 'low_stock'
    return 'in_stock'


def apply_stock_delta(uow: MarketplaceUnit, *, product_id: str, delta: int) -> StockChange:
    product = uow.get_product(product_id, for_update=True)
    if product is None:
        raise NotFoundError('Product', product_id)
    new_stock = product.stock_quantity + delta
    if new_stock < 0:
        raise ValidationError(
            f'Insufficient stock for {product.name}: {product.stock_quantity} available, {-delta} requested'
        )
    saved = uow.save_product(replace(product, stock_quantity=new_stock))
    return StockChange(product=saved, previous_stock=product.stock_quantity, new_stock=new_stock)


def adjust_stock(
    repository: MarketplaceRepository,
    *,
    product_id: str,
    delta: int | None = None,
    quantity: int | None = None,
    supplier_id: str | None = None,
) -> StockChange:
    """Apply a relative ``delta`` or set an absolute ``quantity``, never below zero."""
    if (delta is None) == (quantity is None):
        raise ValidationError('Provide exactly one of delta or quantity')
    if quantity is not None and quantity < 0:
        raise ValidationError('Stock quantity cannot be negative')

    with repository.unit_of_work() as uow:
        product = uow.get_product(product_id, for_update=True)
        if product is None:
            raise NotFoundError('Product', product_id)
        if supplier_id is not None and product.supplier_id != supplier_id:
            raise PermissionDeniedError('You do not have permission to update this product')
        change = apply_stock_delta(
            uow,
            product_id=product_id,
            delta=delta if delta is not None else quantity - product.stock_quantity,
        )

    logger.info('Stock for %s changed %s -> %s', product_id, change.previous_stock, change.new_stock)
    return change


def inventory_summary(products: list[ProductRecord]) -> dict:
    return {
        'total_products': len(products),
        'in_stock': sum(1 for p in products if stock_status(p.stock_quantity) == 'in_stock'),
        'low_stock': sum(1 for p in products if stock_status(p.stock_quantity) == 'low_stock'),
        'out_of_stock': sum(1 for p in products if stock_status(p.stock_quantity) == 'out_of_stock'),
        'total_stock_value': sum(
            ((p.cost_price or Decimal('0')) * p.stock_quantity for p in products), Decimal('0')
        ),
    }
