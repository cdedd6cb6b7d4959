from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import Mock, patch

from app.errors import (
    IllegalTransitionError,
    NotFoundError,
    PaymentGatewayError,
    RefundFinalizeError,
    RepositoryError,
    ValidationError,
)
from app.models import PaymentMethod, PaymentStatus
from app.services.memory_repository import _MemoryUnit
from app.services.payment_gateway import GatewayPayment, MockPaymentGateway, map_gateway_status, to_halalas
from app.services.payment_service import (
    client_payment_stats,
    create_payment,
    process_refund,
    sync_gateway_status,
    update_payment_status,
)

from marketplace_fixtures import (
    ADMIN_ID,
    CARD_PAYMENT_ID,
    CLIENT_ID,
    GATEWAY_PAYMENT_ID,
    ORDER_ID,
    add_card_payment,
    seed_marketplace,
)


def _gateway(amount: Decimal = Decimal('1100.00'), status: str = 'paid') -> MockPaymentGateway:
    gateway = MockPaymentGateway()
    gateway.register_payment(
        GatewayPayment(id=GATEWAY_PAYMENT_ID, status=status, amount_halalas=to_halalas(amount), card_last_four='4242')
    )
    return gateway


def _payment(repository):
    with repository.unit_of_work() as uow:
        return uow.get_payment(CARD_PAYMENT_ID)


def _refunds(repository):
    with repository.unit_of_work() as uow:
        return uow.list_refunds(payment_id=CARD_PAYMENT_ID)


class PaymentLifecycleTests(unittest.TestCase):
    def test_create_then_pay_stamps_paid_at(self) -> None:
        repository = seed_marketplace()
        payment = create_payment(
            repository,
            order_id=ORDER_ID,
            client_id=CLIENT_ID,
            amount='1100',
            payment_method=PaymentMethod.MADA,
        )
        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.currency, 'SAR')

        paid = update_payment_status(repository, payment_id=payment.id, status=PaymentStatus.PAID)
        self.assertEqual(paid.status, PaymentStatus.PAID)
        self.assertIsNotNone(paid.paid_at)

    def test_create_requires_positive_amount_and_known_order(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            create_payment(repository, order_id=ORDER_ID, client_id=CLIENT_ID, amount='0', payment_method=PaymentMethod.CREDITCARD)
        with self.assertRaises(NotFoundError):
            create_payment(repository, order_id='nope', client_id=CLIENT_ID, amount='5', payment_method=PaymentMethod.CREDITCARD)

    def test_failure_reason_is_recorded(self) -> None:
        repository = seed_marketplace()
        add_card_payment(repository, status=PaymentStatus.PENDING)
        failed = update_payment_status(
            repository, payment_id=CARD_PAYMENT_ID, status=PaymentStatus.FAILED, failure_reason='Card declined'
        )
        self.assertEqual(failed.failure_reason, 'Card declined')
        self.assertIsNotNone(failed.failed_at)


class ProcessRefundTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repository = seed_marketplace()
        add_card_payment(self.repository)
        self.gateway = _gateway()

    def _refund(self, amount: str):
        return process_refund(
            self.repository,
            self.gateway,
            payment_id=CARD_PAYMENT_ID,
            amount=amount,
            reason='Damaged goods',
            processed_by=ADMIN_ID,
        )

    def test_partial_then_full_refund(self) -> None:
        first = self._refund('100.00')
        self.assertEqual(first.status, PaymentStatus.REFUNDED)
        self.assertTrue(first.moyasar_refund_id.startswith('mock-refund-'))
        self.assertEqual(self.gateway.refunds[0].amount_halalas, 10000)
        self.assertEqual(_payment(self.repository).status, PaymentStatus.PARTIALLY_REFUNDED)

        self._refund('1000.00')
        payment = _payment(self.repository)
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)
        self.assertIsNotNone(payment.refunded_at)
        self.assertEqual(len(_refunds(self.repository)), 2)

    def test_over_refund_is_rejected_before_gateway(self) -> None:
        self._refund('1000.00')
        gateway = Mock()
        with self.assertRaises(ValidationError):
            process_refund(
                self.repository, gateway, payment_id=CARD_PAYMENT_ID, amount='100.01', reason='Extra', processed_by=ADMIN_ID
            )
        gateway.refund_payment.assert_not_called()

    def test_refund_needs_reason_and_refundable_status(self) -> None:
        with self.assertRaises(ValidationError):
            process_refund(
                self.repository, self.gateway, payment_id=CARD_PAYMENT_ID, amount='10', reason=' ', processed_by=ADMIN_ID
            )
        with self.assertRaises(NotFoundError):
            process_refund(
                self.repository, self.gateway, payment_id='missing', amount='10', reason='Broken', processed_by=ADMIN_ID
            )

        pending = seed_marketplace()
        add_card_payment(pending, status=PaymentStatus.PENDING)
        with self.assertRaises(ValidationError):
            process_refund(
                pending, self.gateway, payment_id=CARD_PAYMENT_ID, amount='10', reason='Broken', processed_by=ADMIN_ID
            )

    def test_gateway_failure_writes_nothing(self) -> None:
        gateway = Mock()
        gateway.refund_payment.side_effect = PaymentGatewayError('gateway down')
        with self.assertRaises(PaymentGatewayError):
            process_refund(
                self.repository, gateway, payment_id=CARD_PAYMENT_ID, amount='10', reason='Broken', processed_by=ADMIN_ID
            )
        self.assertEqual(_refunds(self.repository), [])
        self.assertEqual(_payment(self.repository).status, PaymentStatus.PAID)

    def test_status_update_failure_rolls_refund_back(self) -> None:
        with patch.object(_MemoryUnit, 'save_payment', side_effect=RuntimeError('write failed')):
            with self.assertRaises(RefundFinalizeError) as caught:
                self._refund('100.00')

        self.assertEqual(caught.exception.outcome, RefundFinalizeError.ROLLED_BACK)
        self.assertIsInstance(caught.exception.__cause__, RuntimeError)
        self.assertEqual(_refunds(self.repository), [])
        self.assertEqual(_payment(self.repository).status, PaymentStatus.PAID)

    def test_refund_is_marked_failed_when_delete_does_not_happen(self) -> None:
        with patch.object(_MemoryUnit, 'save_payment', side_effect=RuntimeError('write failed')), patch.object(
            _MemoryUnit, 'delete_refund', return_value=False
        ):
            with self.assertRaises(RefundFinalizeError) as caught:
                self._refund('100.00')

        self.assertEqual(caught.exception.outcome, RefundFinalizeError.MARKED_FAILED)
        refunds = _refunds(self.repository)
        self.assertEqual(len(refunds), 1)
        self.assertEqual(refunds[0].id, caught.exception.refund_id)
        self.assertEqual(refunds[0].status, PaymentStatus.FAILED)

    def test_mark_failed_error_still_reports_finalize_failure(self) -> None:
        save_refund = _MemoryUnit.save_refund

        def refuse_failed(unit, refund):
            if refund.status == PaymentStatus.FAILED:
                raise RepositoryError('connection lost')
            return save_refund(unit, refund)

        with patch.object(_MemoryUnit, 'save_payment', side_effect=RuntimeError('write failed')), patch.object(
            _MemoryUnit, 'delete_refund', return_value=False
        ), patch.object(_MemoryUnit, 'save_refund', refuse_failed):
            with self.assertLogs('app.services.payment_service', level='ERROR'):
                with self.assertRaises(RefundFinalizeError) as caught:
                    self._refund('100.00')

        self.assertEqual(caught.exception.outcome, RefundFinalizeError.MARKED_FAILED)
        self.assertIsInstance(caught.exception.__cause__, RuntimeError)
        self.assertEqual(_refunds(self.repository)[0].status, PaymentStatus.PENDING)


class SyncGatewayStatusTests(unittest.TestCase):
    def test_gateway_status_mapping(self) -> None:
        self.assertEqual(map_gateway_status('Paid'), PaymentStatus.PAID)
        self.assertEqual(map_gateway_status('voided'), PaymentStatus.CANCELLED)
        self.assertEqual(map_gateway_status('something-new'), PaymentStatus.PENDING)
        self.assertEqual(map_gateway_status(None), PaymentStatus.PENDING)

    def test_sync_applies_remote_status_and_card_details(self) -> None:
        repository = seed_marketplace()
        add_card_payment(repository, status=PaymentStatus.PENDING)

        synced = sync_gateway_status(repository, _gateway(), payment_id=CARD_PAYMENT_ID)

        self.assertEqual(synced.status, PaymentStatus.PAID)
        self.assertEqual(synced.card_last_four, '4242')
        self.assertIsNotNone(synced.paid_at)

    def test_partial_gateway_refund_maps_to_partially_refunded(self) -> None:
        repository = seed_marketplace()
        add_card_payment(repository)
        gateway = _gateway()
        gateway.register_payment(
            GatewayPayment(
                id=GATEWAY_PAYMENT_ID, status='refunded', amount_halalas=110000, refunded_halalas=5000
            )
        )

        synced = sync_gateway_status(repository, gateway, payment_id=CARD_PAYMENT_ID)

        self.assertEqual(synced.status, PaymentStatus.PARTIALLY_REFUNDED)

    def test_sync_refuses_backwards_move(self) -> None:
        repository = seed_marketplace()
        add_card_payment(repository, status=PaymentStatus.REFUNDED)
        with self.assertRaises(IllegalTransitionError):
            sync_gateway_status(repository, _gateway(), payment_id=CARD_PAYMENT_ID)


class ClientPaymentStatsTests(unittest.TestCase):
    def test_counts_and_paid_total(self) -> None:
        repository = seed_marketplace()
        add_card_payment(repository)
        create_payment(repository, order_id=ORDER_ID, client_id=CLIENT_ID, amount='50', payment_method=PaymentMethod.CREDITCARD)
        with repository.unit_of_work() as uow:
            stats = client_payment_stats(uow.list_payments(client_id=CLIENT_ID))
        self.assertEqual(stats['total'], 2)
        self.assertEqual(stats['paid'], 1)
        self.assertEqual(stats['pending'], 1)
        self.assertEqual(stats['total_amount'], Decimal('1100.00'))


if __name__ == '__main__':
    unittest.main()
