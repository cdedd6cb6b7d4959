from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol
from uuid import uuid4

from app.errors import PaymentGatewayError
from app.models import PaymentStatus


GATEWAY_STATUS_MAP = {
    'initiated': PaymentStatus.PENDING,
    'paid': PaymentStatus.PAID,
    'failed': PaymentStatus.FAILED,
    'authorized': PaymentStatus.AUTHORIZED,
    'captured': PaymentStatus.CAPTURED,
    'refunded': PaymentStatus.REFUNDED,
    'voided': PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str
    amount_halalas: int
    refunded_halalas: int = 0
    card_last_four: str | None = None
    card_brand: str | None = None
    transaction_url: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    payment_id: str
    amount_halalas: int
    status: str


class PaymentGateway(Protocol):
    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment: ...

    def refund_payment(self, gateway_payment_id: str, *, amount_halalas: int, reason: str) -> GatewayRefund: ...


def to_halalas(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_halalas(halalas: int) -> Decimal:
    return (Decimal(halalas) / Decimal(100)).quantize(Decimal('0.01'))


def map_gateway_status(status: str | None) -> PaymentStatus:
    return GATEWAY_STATUS_MAP.get((status or '').strip().lower(), PaymentStatus.PENDING)


class MockPaymentGateway:
    """Gateway stand-in for demo mode: payments are whatever was registered, refunds always succeed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._payments: dict[str, GatewayPayment] = {}
        self.refunds: list[GatewayRefund] = []

    def register_payment(self, payment: GatewayPayment) -> None:
        with self._lock:
            self._payments[payment.id] = payment

    def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        with self._lock:
            payment = self._payments.get(gateway_payment_id)
        if payment is None:
            raise PaymentGatewayError(f'Unknown gateway payment: {gateway_payment_id}')
        return payment

    def refund_payment(self, gateway_payment_id: str, *, amount_halalas: int, reason: str) -> GatewayRefund:
        with self._lock:
            payment = self._payments.get(gateway_payment_id)
            if payment is None:
                raise PaymentGatewayError(f'Unknown gateway payment: {gateway_payment_id}')
            refunded = payment.refunded_halalas + amount_halalas
            if refunded > payment.amount_halalas:
                raise PaymentGatewayError('Refund amount exceeds the captured amount')
            self._payments[gateway_payment_id] = GatewayPayment(
                id=payment.id,
                status='refunded' if refunded == payment.amount_halalas else payment.status,
                amount_halalas=payment.amount_halalas,
                refunded_halalas=refunded,
                card_last_four=payment.card_last_four,
                card_brand=payment.card_brand,
                transaction_url=payment.transaction_url,
            )
            refund = GatewayRefund(
                id=f'mock-refund-{uuid4().hex[:12]}',
                payment_id=gateway_payment_id,
                amount_halalas=amount_halalas,
                status='refunded',
            )
            self.refunds.append(refund)
        return refund
