from __future__ import annotations

import base64
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from app.config import settings
from app.errors import PaymentGatewayError
from app.services.payment_gateway import GatewayPayment, GatewayRefund

logger = logging.getLogger(__name__)


class MoyasarGateway:
    def __init__(
        self,
        *,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.moyasar_secret_key
        self.base_url = (base_url or settings.moyasar_api_base_url).rstrip('/')
        self.timeout_seconds = timeout_seconds or settings.moyasar_timeout_seconds

    def _headers(self) -> dict[str, str]:
        if not self.secret_key:
            raise PaymentGatewayError('MOYASAR_SECRET_KEY is required')
        token = base64.b64encode(f'{self.secret_key}:'.encode('utf-8')).decode('ascii')
        return {
            'Authorization': f'Basic {token}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        req = Request(
            url=f'{self.base_url}{path}',
            data=json.dumps(payload).encode('utf-8') if payload is not None else None,
            headers=self._headers(),
            method=method,
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                return json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            logger.error('Moyasar API error %s on %s %s', exc.code, method, path)
            raise PaymentGatewayError(f'Moyasar API error {exc.code}: {body}') from exc
        except URLError as exc:
            logger.error('Moyasar network error on %s %s: %s', method, path, exc.reason)
            raise PaymentGatewayError(f'Moyasar API network error: {exc.reason}') from exc

    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        data = self._request('GET', f'/payments/{quote(gateway_payment_id, safe="")}')
        source = data.get('source') or {}
        number = source.get('number') or ''
        return GatewayPayment(
            id=data['id'],
            status=str(data.get('status') or ''),
            amount_halalas=int(data.get('amount') or 0),
            refunded_halalas=int(data.get('refunded') or 0),
            card_last_four=number[-4:] if number else None,
            card_brand=source.get('company'),
            transaction_url=source.get('transaction_url'),
            message=source.get('message'),
        )

    def refund_payment(self, gateway_payment_id: str, *, amount_halalas: int, reason: str) -> GatewayRefund:
        data = self._request(
            'POST',
            f'/payments/{quote(gateway_payment_id, safe="")}/refund',
            {'amount': amount_halalas, 'reason': reason},
        )
        return GatewayRefund(
            id=str(data.get('id') or gateway_payment_id),
            payment_id=gateway_payment_id,
            amount_halalas=int(data.get('refunded') or amount_halalas),
            status=str(data.get('status') or ''),
        )
