from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.errors import ConflictError, ValidationError
from app.models import OrderStatus
from app.services.bank_transfer_service import PaymentReviewOutcome, mark_order_as_paid, reject_payment_submission
from app.services.records import OrderRecord
from app.services.repository import MarketplaceRepository


REVIEWABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.AWAITING_CONFIRMATION})


class ReviewState(str, Enum):
    OPEN = 'OPEN'
    CONFIRMING = 'CONFIRMING'
    REJECTING = 'REJECTING'
    CONFIRMED = 'CONFIRMED'
    REJECTED = 'REJECTED'
    CANCELLED = 'CANCELLED'


IN_FLIGHT_STATES = frozenset({ReviewState.CONFIRMING, ReviewState.REJECTING})
CLOSED_STATES = frozenset({ReviewState.CONFIRMED, ReviewState.REJECTED, ReviewState.CANCELLED})


@dataclass
class PaymentReview:
    """
    One admin review of a submitted bank transfer.

    ``order`` is the snapshot the review was opened against; confirm and
    reject only succeed while the stored order still has that status.
    """

    order: OrderRecord
    reference: str = ''
    notes: str = ''
    state: ReviewState = ReviewState.OPEN
    error: str | None = None

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    @property
    def can_confirm(self) -> bool:
        return self.state == ReviewState.OPEN and bool(self.reference.strip())

    @property
    def can_reject(self) -> bool:
        return (
            self.state == ReviewState.OPEN
            and bool(self.notes.strip())
            and self.order.status == OrderStatus.AWAITING_CONFIRMATION
        )


def open_payment_review(order: OrderRecord) -> PaymentReview:
    if order.status not in REVIEWABLE_ORDER_STATUSES:
        raise ValidationError(f'Order {order.id} is not awaiting payment review ({order.status.value})')
    return PaymentReview(order=order, reference=order.payment_reference or '')


def _begin(review: PaymentReview, state: ReviewState) -> None:
    if review.in_flight:
        raise ConflictError(f'A review action is already in progress for order {review.order.id}')
    if review.state in CLOSED_STATES:
        raise ValidationError(f'Payment review for order {review.order.id} is already {review.state.value.lower()}')
    review.state = state
    review.error = None


def confirm_review(
    repository: MarketplaceRepository,
    review: PaymentReview,
    *,
    admin_id: str,
) -> PaymentReviewOutcome:
    if review.state == ReviewState.OPEN and not review.reference.strip():
        raise ValidationError('Payment reference is required to confirm payment')
    _begin(review, ReviewState.CONFIRMING)
    try:
        outcome = mark_order_as_paid(
            repository,
            order_id=review.order.id,
            admin_id=admin_id,
            payment_reference=review.reference,
            notes=review.notes,
            expected_status=review.order.status,
        )
    except Exception as exc:
        review.state = ReviewState.OPEN
        review.error = str(exc)
        raise
    review.state = ReviewState.CONFIRMED
    review.order = outcome.order
    return outcome


def reject_review(
    repository: MarketplaceRepository,
    review: PaymentReview,
    *,
    admin_id: str,
) -> PaymentReviewOutcome:
    if review.state == ReviewState.OPEN and not review.can_reject:
        if not review.notes.strip():
            raise ValidationError('Rejection reason is required')
        raise ValidationError(f'Only orders awaiting confirmation can be rejected ({review.order.status.value})')
    _begin(review, ReviewState.REJECTING)
    try:
        outcome = reject_payment_submission(
            repository,
            order_id=review.order.id,
            admin_id=admin_id,
            reason=review.notes,
            expected_status=review.order.status,
        )
    except Exception as exc:
        review.state = ReviewState.OPEN
        review.error = str(exc)
        raise
    review.state = ReviewState.REJECTED
    review.order = outcome.order
    return outcome


def cancel_review(review: PaymentReview) -> None:
    if review.in_flight:
        raise ConflictError(f'A review action is already in progress for order {review.order.id}')
    if review.state == ReviewState.OPEN:
        review.state = ReviewState.CANCELLED
