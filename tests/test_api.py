from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.config import settings
from app.main import create_app
from app.models import OrderStatus
from app.security.passwords import hash_password
from app.services.document_storage import InMemoryDocumentStorage
from app.services.marketplace_store import MarketplaceStore
from app.services.memory_repository import _MemoryUnit
from app.services.payment_gateway import GatewayPayment, MockPaymentGateway

from marketplace_fixtures import (
    CARD_PAYMENT_ID,
    CLIENT_ID,
    GATEWAY_PAYMENT_ID,
    ORDER_ID,
    add_card_payment,
    paused_scheduler,
    seed_marketplace,
)

PASSWORD = 'correct horse battery'
PASSWORD_HASH = hash_password(PASSWORD)


class ApiTestCase(unittest.TestCase):
    order_status = OrderStatus.PENDING_PAYMENT

    def setUp(self) -> None:
        repository = seed_marketplace(order_status=self.order_status, password_hash=PASSWORD_HASH)
        add_card_payment(repository)
        gateway = MockPaymentGateway()
        gateway.register_payment(GatewayPayment(id=GATEWAY_PAYMENT_ID, status='paid', amount_halalas=110000))
        self.store = MarketplaceStore(
            repository, storage=InMemoryDocumentStorage(), gateway=gateway, scheduler=paused_scheduler()
        )
        self.addCleanup(self.store.close)
        self.store.load_all()
        self.client = TestClient(create_app(store=self.store))

    def csrf_token(self) -> str:
        response = self.client.get('/login')
        self.assertEqual(response.status_code, 200)
        return response.json()['csrf_token']

    def login(self, email: str, password: str = PASSWORD):
        token = self.csrf_token()
        response = self.client.post(
            '/login', data={'email': email, 'password': password}, headers={'X-CSRF-Token': token}
        )
        return response, token


class AuthenticationTests(ApiTestCase):
    def test_health_is_public_and_hardened(self) -> None:
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['x-content-type-options'], 'nosniff')
        self.assertEqual(response.headers['cache-control'], 'no-store')

    def test_protected_routes_need_a_session(self) -> None:
        response = self.client.get('/client/orders')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'detail': 'Not authenticated'})

    def test_login_without_csrf_token_is_refused(self) -> None:
        self.csrf_token()
        response = self.client.post('/login', data={'email': 'client@example.com', 'password': PASSWORD})
        self.assertEqual(response.status_code, 403)

    def test_bad_password_is_logged_and_rejected(self) -> None:
        response, _ = self.login('client@example.com', 'wrong')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'detail': 'Invalid email or password'})
        with self.store.repository.unit_of_work() as uow:
            events = list(uow._rows('auth_events').values())
        self.assertEqual([(e.success, e.failure_reason) for e in events], [(False, 'BAD_PASSWORD')])

    def test_login_returns_user_without_password_hash(self) -> None:
        response, _ = self.login('CLIENT@example.com')
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['user']['id'], CLIENT_ID)
        self.assertNotIn('password_hash', body['user'])
        self.assertEqual(body['user']['credit_limit'], '1000.00')
        self.assertTrue(self.store.session_reminders.pending(CLIENT_ID))

        self.assertEqual(self.client.get('/session').status_code, 200)

    def test_logout_ends_session(self) -> None:
        _, token = self.login('client@example.com')
        self.assertEqual(self.client.post('/logout', headers={'X-CSRF-Token': token}).status_code, 200)
        self.assertFalse(self.store.session_reminders.pending(CLIENT_ID))
        self.assertEqual(self.client.get('/client/orders').status_code, 401)

    def test_sliding_expiry_moves_cookie_and_reminder_together(self) -> None:
        login_response, _ = self.login('client@example.com')
        session_token = self.client.cookies.get(settings.session_cookie_name)
        login_expiry = datetime.fromisoformat(login_response.json()['expires_at'])

        later = datetime.now(tz=timezone.utc) + timedelta(minutes=5)
        with patch('app.security.sessions._now', return_value=later):
            response = self.client.get('/client/orders')
        self.assertEqual(response.status_code, 200)

        with self.store.repository.unit_of_work() as uow:
            stored_expiry = uow.get_web_session(session_token).expires_at
        self.assertGreater(stored_expiry, login_expiry)
        self.assertEqual(
            self.store.session_reminders.pending_run_date(CLIENT_ID),
            stored_expiry - self.store.session_reminders.lead,
        )
        cookie = response.headers['set-cookie']
        self.assertIn(f'{settings.session_cookie_name}={session_token}', cookie)
        self.assertIn(f'Max-Age={settings.session_ttl_minutes * 60}', cookie)


class ClientApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        _, self.token = self.login('client@example.com')

    def test_bank_transfer_submission(self) -> None:
        response = self.client.post(
            f'/client/orders/{ORDER_ID}/bank-transfer',
            data={'reference': 'E2E-123'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['status'], 'AWAITING_CONFIRMATION')
        self.assertEqual(body['payment_reference'], 'E2E-123')
        self.assertEqual(body['amount'], '1100.00')

        unread = self.client.get('/client/notifications', params={'unread': 'true'}).json()
        self.assertEqual(unread[0]['title'], 'Payment reference submitted')

    def test_unknown_order_is_404(self) -> None:
        self.assertEqual(self.client.get('/client/orders/missing').status_code, 404)

    def test_admin_routes_are_forbidden(self) -> None:
        self.assertEqual(self.client.get('/admin/orders').status_code, 403)

    def test_po_upload_rejects_non_pdf(self) -> None:
        self.client.post(
            f'/client/orders/{ORDER_ID}/po-flow/confirmation',
            data={'not_test_order': 'on', 'payment_terms_accepted': 'on'},
            headers={'X-CSRF-Token': self.token},
        )
        download = self.client.post(f'/client/orders/{ORDER_ID}/po-flow/download', headers={'X-CSRF-Token': self.token})
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.headers['content-type'], 'application/pdf')

        response = self.client.post(
            f'/client/orders/{ORDER_ID}/po-flow/upload',
            files={'file': ('po.png', b'not a pdf', 'image/png')},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get(f'/client/orders/{ORDER_ID}/po-flow').json()['step'], 'upload')


class AdminApiTests(ApiTestCase):
    order_status = OrderStatus.AWAITING_CONFIRMATION

    def setUp(self) -> None:
        super().setUp()
        _, self.token = self.login('admin@example.com')

    def test_pending_payment_queue(self) -> None:
        orders = self.client.get('/admin/orders', params={'status': 'pending-payment'}).json()
        self.assertEqual([order['id'] for order in orders], [ORDER_ID])

    def test_stale_review_conflicts(self) -> None:
        rejected = self.client.post(
            f'/admin/orders/{ORDER_ID}/payment-review/reject',
            data={'reason': 'Not on statement', 'expected_status': 'AWAITING_CONFIRMATION'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()['status'], 'PENDING_PAYMENT')

        confirmed = self.client.post(
            f'/admin/orders/{ORDER_ID}/payment-review/confirm',
            data={'expected_status': 'AWAITING_CONFIRMATION'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(confirmed.status_code, 409)

        audit = self.client.get(f'/admin/orders/{ORDER_ID}/payment-audit').json()
        self.assertEqual([entry['action'] for entry in audit], ['PAYMENT_REJECTED'])

    def test_manual_status_change_cannot_confirm_payment(self) -> None:
        response = self.client.post(
            f'/admin/orders/{ORDER_ID}/status',
            data={'status': 'PAYMENT_CONFIRMED'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(response.status_code, 400)

    def test_credit_limit_decrease_beyond_limit(self) -> None:
        response = self.client.post(
            f'/admin/clients/{CLIENT_ID}/credit-limit',
            data={'adjustment_type': 'decrease', 'amount': '5000', 'reason': 'Risk review'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get(f'/admin/clients/{CLIENT_ID}/credit-limit/history').json(), [])

        response = self.client.post(
            f'/admin/clients/{CLIENT_ID}/credit-limit',
            data={'adjustment_type': 'increase', 'amount': '500', 'reason': 'Annual review'},
            headers={'X-CSRF-Token': self.token},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['user']['credit_limit'], '1500.00')

    def test_refund_finalize_failure_reports_outcome(self) -> None:
        with patch.object(_MemoryUnit, 'save_payment', side_effect=RuntimeError('write failed')):
            response = self.client.post(
                f'/admin/payments/{CARD_PAYMENT_ID}/refund',
                data={'amount': '100', 'reason': 'Damaged goods'},
                headers={'X-CSRF-Token': self.token},
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['outcome'], 'ROLLED_BACK')


if __name__ == '__main__':
    unittest.main()
