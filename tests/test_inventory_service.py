from __future__ import annotations

import unittest
from decimal import Decimal

from app.errors import PermissionDeniedError, ValidationError
from app.services.inventory_service import adjust_stock, inventory_summary, stock_status

from marketplace_fixtures import GLOVES_ID, HELMET_ID, OTHER_CLIENT_ID, SUPPLIER_ID, seed_marketplace


class InventoryTests(unittest.TestCase):
    def test_stock_status_bands(self) -> None:
        self.assertEqual(stock_status(0), 'out_of_stock')
        self.assertEqual(stock_status(5), 'low_stock')
        self.assertEqual(stock_status(6), 'in_stock')

    def test_delta_and_absolute_adjustments(self) -> None:
        repository = seed_marketplace()
        change = adjust_stock(repository, product_id=GLOVES_ID, delta=-10, supplier_id=SUPPLIER_ID)
        self.assertEqual((change.previous_stock, change.new_stock), (50, 40))

        change = adjust_stock(repository, product_id=GLOVES_ID, quantity=7)
        self.assertEqual(change.new_stock, 7)

    def test_stock_never_goes_negative(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            adjust_stock(repository, product_id=HELMET_ID, delta=-5)
        with self.assertRaises(ValidationError):
            adjust_stock(repository, product_id=HELMET_ID, quantity=-1)
        with self.assertRaises(ValidationError):
            adjust_stock(repository, product_id=HELMET_ID)
        with repository.unit_of_work() as uow:
            self.assertEqual(uow.get_product(HELMET_ID).stock_quantity, 4)

    def test_only_owning_supplier_may_adjust(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(PermissionDeniedError):
            adjust_stock(repository, product_id=GLOVES_ID, delta=1, supplier_id=OTHER_CLIENT_ID)

    def test_summary(self) -> None:
        repository = seed_marketplace()
        with repository.unit_of_work() as uow:
            summary = inventory_summary(uow.list_products(supplier_id=SUPPLIER_ID))
        self.assertEqual(summary['total_products'], 2)
        self.assertEqual(summary['in_stock'], 1)
        self.assertEqual(summary['low_stock'], 1)
        self.assertEqual(summary['total_stock_value'], Decimal('140.00'))


if __name__ == '__main__':
    unittest.main()
