"""
Error taxonomy shared by services, repositories and the HTTP layer.

Validation problems subclass the builtin exception the rest of the code
already catches (ValueError, LookupError, PermissionError) so callers that
only know the builtins keep working.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for every error raised on purpose by this application."""


class ValidationError(MarketplaceError, ValueError):
    pass


class NotFoundError(MarketplaceError, LookupError):
    def __init__(self, resource: str, identifier: str):
        super().__init__(f'{resource} not found: {identifier}')
        self.resource = resource
        self.identifier = identifier


class PermissionDeniedError(MarketplaceError, PermissionError):
    pass


class ConflictError(MarketplaceError):
    pass


class IllegalTransitionError(MarketplaceError):
    def __init__(self, subject: str, current: object, requested: object):
        current_value = getattr(current, 'value', current)
        requested_value = getattr(requested, 'value', requested)
        super().__init__(f'Invalid {subject} status transition: {current_value} -> {requested_value}')
        self.subject = subject
        self.current = current
        self.requested = requested


class RepositoryError(MarketplaceError):
    """The backing store rejected or failed a read/write."""


class PaymentGatewayError(MarketplaceError):
    pass


class RefundFinalizeError(MarketplaceError):
    ROLLED_BACK = 'ROLLED_BACK'
    MARKED_FAILED = 'MARKED_FAILED'

    def __init__(self, refund_id: str, outcome: str):
        if outcome == self.ROLLED_BACK:
            message = 'Refund payment status update failed. Refund record was rolled back.'
        else:
            message = 'Refund payment status update failed. Refund has been marked as failed.'
        super().__init__(message)
        self.refund_id = refund_id
        self.outcome = outcome
