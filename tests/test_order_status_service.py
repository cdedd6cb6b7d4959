from __future__ import annotations

import unittest

from app.errors import IllegalTransitionError, ValidationError
from app.models import OrderStatus
from app.services.order_status_service import (
    ORDER_STATUS_TRANSITIONS,
    allowed_order_status_transitions,
    can_transition_order_status,
    change_order_status,
    is_payment_controlled,
)

from marketplace_fixtures import ORDER_ID, seed_marketplace


class OrderStatusGuardTests(unittest.TestCase):
    def test_every_status_has_a_row(self) -> None:
        self.assertEqual(set(ORDER_STATUS_TRANSITIONS), set(OrderStatus))

    def test_transition_table(self) -> None:
        self.assertTrue(can_transition_order_status(OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_CONFIRMATION))
        self.assertTrue(can_transition_order_status(OrderStatus.DELIVERED, OrderStatus.COMPLETED))
        self.assertTrue(can_transition_order_status(OrderStatus.COMPLETED, OrderStatus.COMPLETED))
        self.assertFalse(can_transition_order_status(OrderStatus.COMPLETED, OrderStatus.CANCELLED))
        self.assertFalse(can_transition_order_status(OrderStatus.DELIVERED, OrderStatus.PENDING_PAYMENT))
        self.assertFalse(can_transition_order_status('NOT_A_STATUS', OrderStatus.CANCELLED))
        self.assertEqual(allowed_order_status_transitions('NOT_A_STATUS'), [])

    def test_payment_controlled_moves(self) -> None:
        self.assertTrue(is_payment_controlled(OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_CONFIRMATION))
        self.assertTrue(is_payment_controlled(OrderStatus.AWAITING_CONFIRMATION, OrderStatus.PAYMENT_CONFIRMED))
        self.assertTrue(is_payment_controlled(OrderStatus.AWAITING_CONFIRMATION, OrderStatus.PENDING_PAYMENT))
        self.assertFalse(is_payment_controlled(OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED))


class ChangeOrderStatusTests(unittest.TestCase):
    def test_manual_change_is_persisted(self) -> None:
        repository = seed_marketplace()
        order = change_order_status(repository, order_id=ORDER_ID, status=OrderStatus.CANCELLED)
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        with repository.unit_of_work() as uow:
            self.assertEqual(uow.get_order(ORDER_ID).status, OrderStatus.CANCELLED)

    def test_illegal_change_is_refused(self) -> None:
        repository = seed_marketplace(order_status=OrderStatus.DELIVERED)
        with self.assertRaises(IllegalTransitionError):
            change_order_status(repository, order_id=ORDER_ID, status=OrderStatus.PROCESSING)
        with repository.unit_of_work() as uow:
            self.assertEqual(uow.get_order(ORDER_ID).status, OrderStatus.DELIVERED)

    def test_payment_controlled_change_is_refused(self) -> None:
        repository = seed_marketplace()
        with self.assertRaises(ValidationError):
            change_order_status(repository, order_id=ORDER_ID, status=OrderStatus.PAYMENT_CONFIRMED)


if __name__ == '__main__':
    unittest.main()
