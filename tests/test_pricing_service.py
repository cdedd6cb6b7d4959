from __future__ import annotations

import unittest
from decimal import Decimal

from app.errors import NotFoundError, ValidationError
from app.services.pricing_service import (
    apply_quote_margin,
    apply_rfq_margin,
    compute_final_price,
    normalize_margin_percent,
    set_client_margin,
)

from marketplace_fixtures import CLIENT_ID, QUOTE_ID, RFQ_ID, SUPPLIER_ID, seed_marketplace


class PricingTests(unittest.TestCase):
    def test_final_price_rounds_to_cents(self) -> None:
        self.assertEqual(compute_final_price(Decimal('99.99'), Decimal('12.5')), Decimal('112.49'))
        self.assertEqual(compute_final_price(Decimal('1000'), Decimal('0')), Decimal('1000.00'))

    def test_margin_bounds(self) -> None:
        for raw in ('-1', '100.01', 'ten', 'NaN'):
            with self.subTest(raw=raw), self.assertRaises(ValidationError):
                normalize_margin_percent(raw)
        self.assertEqual(normalize_margin_percent('100'), Decimal('100.00'))

    def test_quote_and_rfq_margins_reprice(self) -> None:
        repository = seed_marketplace()
        quote = apply_quote_margin(repository, quote_id=QUOTE_ID, margin_percent='20')
        self.assertEqual(quote.final_price, Decimal('1200.00'))

        quotes = apply_rfq_margin(repository, rfq_id=RFQ_ID, margin_percent='5')
        self.assertEqual([q.final_price for q in quotes], [Decimal('1050.00')])

        with self.assertRaises(NotFoundError):
            apply_rfq_margin(repository, rfq_id='missing', margin_percent='5')

    def test_client_margin_only_for_clients(self) -> None:
        repository = seed_marketplace()
        self.assertEqual(set_client_margin(repository, client_id=CLIENT_ID, margin_percent='7.5').client_margin, Decimal('7.50'))
        with self.assertRaises(NotFoundError):
            set_client_margin(repository, client_id=SUPPLIER_ID, margin_percent='7.5')


if __name__ == '__main__':
    unittest.main()
