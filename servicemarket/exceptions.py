"""Domain errors for the marketplace core and their API rendering."""
from __future__ import annotations

import logging
from typing import Any, Optional

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for every error the domain layer raises on purpose."""

    code = 'marketplace_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'The request could not be completed.'

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    code = 'validation_error'
    default_message = 'The submitted data is invalid.'


class AuthorizationError(MarketplaceError):
    code = 'not_permitted'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You are not allowed to perform this action.'


class StateConflictError(MarketplaceError):
    code = 'state_conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'This action is not possible in the current state.'


class PayoutAccountMissing(MarketplaceError):
    code = 'payout_account_missing'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Add and verify a payout account before accepting bookings.'


class DuplicateDispute(MarketplaceError):
    code = 'duplicate_dispute'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'A dispute is already open for this payment.'


class ExternalServiceError(MarketplaceError):
    code = 'external_service_error'
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = 'A payment provider is unavailable. Please try again later.'


class ExternalServiceTimeout(ExternalServiceError):
    code = 'external_service_timeout'
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = 'A payment provider did not respond in time. Please try again later.'


class RefundFailed(MarketplaceError):
    """Refund could not be issued now; the caller flags the booking and queues a retry."""

    code = 'refund_failed'
    default_message = 'The refund could not be processed yet and has been queued.'


def api_exception_handler(exc, context):
    """Render domain errors as ``{"code", "detail"}`` and defer the rest to DRF."""
    if isinstance(exc, MarketplaceError):
        if exc.status_code >= 500:
            logger.warning('External failure in %s: %s', context.get('view'), exc)
        return Response({'code': exc.code, 'detail': exc.message}, status=exc.status_code)
    return exception_handler(exc, context)
