from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch

from app.errors import ConflictError, IllegalTransitionError, PermissionDeniedError, ValidationError
from app.models import OrderStatus, PaymentAuditAction, PaymentMethod, PaymentStatus
from app.services.bank_transfer_service import (
    REJECTION_NOTE_PREFIX,
    generate_payment_reference,
    mark_order_as_paid,
    payment_statistics,
    reject_payment_submission,
    set_payment_link,
    submit_payment_reference,
)
from app.services.memory_repository import _MemoryUnit

from marketplace_fixtures import ADMIN_ID, CLIENT_ID, ORDER_ID, OTHER_CLIENT_ID, seed_marketplace


class PaymentReferenceTests(unittest.TestCase):
    def test_generated_reference_format(self) -> None:
        moment = datetime(2026, 1, 1, tzinfo=timezone.utc)
        reference = generate_payment_reference('ORD-7', now=moment)
        millis = int(moment.timestamp() * 1000)
        self.assertTrue(reference.startswith('MWRD-ORD-7-'))
        suffix = reference.rsplit('-', 1)[1]
        self.assertEqual(suffix, suffix.upper())
        self.assertEqual(int(suffix, 36), millis)


class SubmitPaymentReferenceTests(unittest.TestCase):
    def test_submission_moves_order_to_awaiting_confirmation(self) -> None:
        repository = seed_marketplace()

        outcome = submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='  E2E-123 ')

        self.assertEqual(outcome.order.status, OrderStatus.AWAITING_CONFIRMATION)
        self.assertEqual(outcome.order.payment_reference, 'E2E-123')
        self.assertIsNotNone(outcome.order.payment_submitted_at)
        self.assertEqual(outcome.payment.status, PaymentStatus.AWAITING_CONFIRMATION)
        self.assertEqual(outcome.payment.payment_method, PaymentMethod.BANK_TRANSFER)
        self.assertEqual(outcome.payment.metadata['payment_reference'], 'E2E-123')
        self.assertEqual(outcome.audit.action, PaymentAuditAction.REFERENCE_SUBMITTED)
        with repository.unit_of_work() as uow:
            stored = uow.get_order(ORDER_ID)
        self.assertEqual(stored.status, OrderStatus.AWAITING_CONFIRMATION)
        self.assertEqual(stored.payment_reference, 'E2E-123')

    def test_resubmission_updates_the_same_payment(self) -> None:
        repository = seed_marketplace()
        first = submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='REF-1')
        second = submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='REF-2')

        self.assertEqual(second.audit.action, PaymentAuditAction.REFERENCE_RESUBMITTED)
        self.assertEqual(second.payment.id, first.payment.id)
        self.assertEqual(second.order.payment_reference, 'REF-2')
        with repository.unit_of_work() as uow:
            self.assertEqual(len(uow.list_payments(order_id=ORDER_ID)), 1)
            self.assertEqual(len(uow.list_payment_audit_logs(order_id=ORDER_ID)), 2)

    def test_empty_reference_is_rejected(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='   ')

    def test_other_clients_order_is_refused(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(PermissionDeniedError):
            submit_payment_reference(repository, order_id=ORDER_ID, client_id=OTHER_CLIENT_ID, reference='REF-1')

    def test_unpayable_order_is_refused(self) -> None:
        repository = seed_marketplace(order_status=OrderStatus.DELIVERED)
        with self.assertRaises(IllegalTransitionError):
            submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='REF-1')

    def test_failed_payment_write_leaves_order_unchanged(self) -> None:
        repository = seed_marketplace()
        with patch.object(_MemoryUnit, 'save_payment', side_effect=RuntimeError('store offline')):
            with self.assertRaises(RuntimeError):
                submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='REF-1')

        with repository.unit_of_work() as uow:
            order = uow.get_order(ORDER_ID)
            self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)
            self.assertIsNone(order.payment_reference)
            self.assertEqual(uow.list_payment_audit_logs(order_id=ORDER_ID), [])


class PaymentReviewWriteTests(unittest.TestCase):
    def _submitted(self):
        repository = seed_marketplace()
        submit_payment_reference(repository, order_id=ORDER_ID, client_id=CLIENT_ID, reference='REF-1', notes='Paid from ANB')
        return repository

    def test_mark_as_paid_confirms_order_and_payment(self) -> None:
        repository = self._submitted()

        outcome = mark_order_as_paid(repository, order_id=ORDER_ID, admin_id=ADMIN_ID, notes='Seen on statement')

        self.assertEqual(outcome.order.status, OrderStatus.PAYMENT_CONFIRMED)
        self.assertEqual(outcome.order.payment_confirmed_by, ADMIN_ID)
        self.assertIsNotNone(outcome.order.payment_confirmed_at)
        self.assertEqual(outcome.payment.status, PaymentStatus.CONFIRMED)
        self.assertEqual(outcome.audit.action, PaymentAuditAction.PAYMENT_CONFIRMED)

    def test_mark_as_paid_without_submission_creates_payment(self) -> None:
        repository = seed_marketplace()
        outcome = mark_order_as_paid(repository, order_id=ORDER_ID, admin_id=ADMIN_ID, payment_reference='WIRE-9')
        self.assertEqual(outcome.payment.status, PaymentStatus.CONFIRMED)
        self.assertEqual(outcome.order.payment_reference, 'WIRE-9')

    def test_mark_as_paid_requires_reference(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            mark_order_as_paid(repository, order_id=ORDER_ID, admin_id=ADMIN_ID)

    def test_confirming_twice_conflicts(self) -> None:
        repository = self._submitted()
        mark_order_as_paid(repository, order_id=ORDER_ID, admin_id=ADMIN_ID)
        with self.assertRaises(ConflictError):
            mark_order_as_paid(repository, order_id=ORDER_ID, admin_id=ADMIN_ID)

    def test_reject_reverts_order_and_appends_note(self) -> None:
        repository = self._submitted()

        outcome = reject_payment_submission(repository, order_id=ORDER_ID, admin_id=ADMIN_ID, reason='Amount mismatch')

        self.assertEqual(outcome.order.status, OrderStatus.PENDING_PAYMENT)
        self.assertIsNone(outcome.order.payment_submitted_at)
        self.assertEqual(outcome.order.payment_notes, f'Paid from ANB\n{REJECTION_NOTE_PREFIX}Amount mismatch')
        self.assertEqual(outcome.payment.status, PaymentStatus.REJECTED)
        self.assertEqual(outcome.audit.action, PaymentAuditAction.PAYMENT_REJECTED)

    def test_reject_requires_reason_and_awaiting_order(self) -> None:
        repository = self._submitted()
        with self.assertRaises(ValidationError):
            reject_payment_submission(repository, order_id=ORDER_ID, admin_id=ADMIN_ID, reason='  ')

        pending = seed_marketplace()
        with self.assertRaises(IllegalTransitionError):
            reject_payment_submission(pending, order_id=ORDER_ID, admin_id=ADMIN_ID, reason='Not received')

    def test_stale_expected_status_conflicts(self) -> None:
        repository = self._submitted()
        reject_payment_submission(repository, order_id=ORDER_ID, admin_id=ADMIN_ID, reason='Not received')

        with self.assertRaises(ConflictError):
            mark_order_as_paid(
                repository,
                order_id=ORDER_ID,
                admin_id=ADMIN_ID,
                expected_status=OrderStatus.AWAITING_CONFIRMATION,
            )
        with repository.unit_of_work() as uow:
            self.assertEqual(uow.get_order(ORDER_ID).status, OrderStatus.PENDING_PAYMENT)

    def test_reference_cannot_be_reused_across_orders(self) -> None:
        repository = self._submitted()
        with repository.unit_of_work() as uow:
            order = uow.get_order(ORDER_ID)
            uow.save_order(replace(order, id='order-2', payment_reference=None, status=OrderStatus.PENDING_PAYMENT))
        with self.assertRaises(ConflictError):
            submit_payment_reference(repository, order_id='order-2', client_id=CLIENT_ID, reference='REF-1')


class PaymentLinkTests(unittest.TestCase):
    def test_link_must_be_http(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            set_payment_link(repository, order_id=ORDER_ID, payment_link_url='javascript:alert(1)')

        order = set_payment_link(repository, order_id=ORDER_ID, payment_link_url='https://pay.example.com/abc')
        self.assertEqual(order.payment_link_url, 'https://pay.example.com/abc')
        self.assertIsNotNone(order.payment_link_sent_at)


class PaymentStatisticsTests(unittest.TestCase):
    def test_buckets(self) -> None:
        repository = self._two_orders()
        with repository.unit_of_work() as uow:
            stats = payment_statistics(uow.list_orders())
        self.assertEqual(stats['total']['count'], 2)
        self.assertEqual(stats['pending_payment']['count'], 1)
        self.assertEqual(stats['paid']['count'], 1)

    def _two_orders(self):
        repository = seed_marketplace()
        with repository.unit_of_work() as uow:
            order = uow.get_order(ORDER_ID)
            uow.save_order(replace(order, id='order-paid', status=OrderStatus.DELIVERED))
        return repository


if __name__ == '__main__':
    unittest.main()
