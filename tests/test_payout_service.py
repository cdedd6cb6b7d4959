from __future__ import annotations

import unittest
from decimal import Decimal

from app.errors import IllegalTransitionError, NotFoundError, ValidationError
from app.models import PayoutStatus
from app.services.payout_service import (
    can_transition_payout,
    list_supplier_payouts,
    record_supplier_payout,
    update_payout_status,
)

from marketplace_fixtures import ADMIN_ID, CLIENT_ID, ORDER_ID, SUPPLIER_ID, seed_marketplace


class PayoutTransitionTests(unittest.TestCase):
    def test_forward_only(self) -> None:
        self.assertTrue(can_transition_payout(PayoutStatus.PENDING, PayoutStatus.PROCESSING))
        self.assertTrue(can_transition_payout(PayoutStatus.PROCESSING, PayoutStatus.PAID))
        self.assertTrue(can_transition_payout(PayoutStatus.PENDING, PayoutStatus.FAILED))
        self.assertFalse(can_transition_payout(PayoutStatus.PAID, PayoutStatus.PENDING))
        self.assertFalse(can_transition_payout(PayoutStatus.PAID, PayoutStatus.FAILED))
        self.assertFalse(can_transition_payout(PayoutStatus.FAILED, PayoutStatus.PROCESSING))


class SupplierPayoutTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repository = seed_marketplace()

    def _record(self, **overrides):
        fields = {
            'supplier_id': SUPPLIER_ID,
            'order_id': ORDER_ID,
            'amount': '990.00',
            'created_by': ADMIN_ID,
            'payment_method': ' BANK_TRANSFER ',
            'reference_number': '',
        }
        fields.update(overrides)
        return record_supplier_payout(self.repository, **fields)

    def test_record_creates_pending_payout(self) -> None:
        payout = self._record()
        self.assertEqual(payout.status, PayoutStatus.PENDING)
        self.assertEqual(payout.amount, Decimal('990.00'))
        self.assertEqual(payout.payment_method, 'BANK_TRANSFER')
        self.assertIsNone(payout.reference_number)
        self.assertEqual([p.id for p in list_supplier_payouts(self.repository, supplier_id=SUPPLIER_ID)], [payout.id])

    def test_record_validates_supplier_order_and_amount(self) -> None:
        with self.assertRaises(ValidationError):
            self._record(amount='0')
        with self.assertRaises(NotFoundError):
            self._record(supplier_id=CLIENT_ID)
        with self.assertRaises(NotFoundError):
            self._record(order_id='missing')

    def test_paid_sets_paid_at_and_is_final(self) -> None:
        payout = self._record()
        processing = update_payout_status(self.repository, payout_id=payout.id, status=PayoutStatus.PROCESSING)
        self.assertIsNone(processing.paid_at)

        paid = update_payout_status(
            self.repository, payout_id=payout.id, status=PayoutStatus.PAID, reference_number='TRX-77'
        )
        self.assertIsNotNone(paid.paid_at)
        self.assertEqual(paid.reference_number, 'TRX-77')

        with self.assertRaises(IllegalTransitionError):
            update_payout_status(self.repository, payout_id=payout.id, status=PayoutStatus.PENDING)
        with self.repository.unit_of_work() as uow:
            self.assertEqual(uow.get_payout(payout.id).status, PayoutStatus.PAID)

    def test_unknown_payout(self) -> None:
        with self.assertRaises(NotFoundError):
            update_payout_status(self.repository, payout_id='missing', status=PayoutStatus.PAID)


if __name__ == '__main__':
    unittest.main()
