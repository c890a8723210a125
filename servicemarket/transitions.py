"""Low-level writes shared by the escrow state machine and the dispute resolver.

All helpers expect to run inside ``transaction.atomic()``. Status writes are
conditional on the status (and for bookings the version) the caller read, so a
concurrent transition that got there first turns into ``StateConflictError``.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db.models import F
from django.utils import timezone

from . import ledger
from .exceptions import AuthorizationError, StateConflictError
from .models import Booking, EscrowPayment, LedgerEntry, Profile
from .payments import PaymentGateway, call_with_timeout, gateway_key, get_gateway

logger = logging.getLogger(__name__)


def lock_booking(booking: Booking) -> Booking:
    """Re-read the booking under a row lock."""
    return (
        Booking.objects.select_for_update()
        .select_related('service', 'customer', 'provider')
        .get(pk=booking.pk)
    )


def require_party(booking: Booking, actor: Profile, *roles: str) -> None:
    allowed = {getattr(booking, f'{role}_id') for role in roles}
    if actor is None or actor.pk not in allowed:
        raise AuthorizationError(f'Only the booking {" or ".join(roles)} can do this.')


def set_booking_status(booking: Booking, new_status: str, resolution: bool = False, **fields) -> Booking:
    if not booking.can_transition(new_status, resolution=resolution):
        raise StateConflictError(f'Cannot move a {booking.status} booking to {new_status}.')
    updated = Booking.objects.filter(pk=booking.pk, status=booking.status, version=booking.version).update(
        status=new_status, version=F('version') + 1, updated_at=timezone.now(), **fields
    )
    if not updated:
        raise StateConflictError('The booking was changed by someone else. Reload and try again.')
    logger.info('Booking %s: %s -> %s', booking.pk, booking.status, new_status)
    booking.status = new_status
    booking.version += 1
    for name, value in fields.items():
        setattr(booking, name, value)
    return booking


def update_booking_flags(booking: Booking, **fields) -> Booking:
    """Change non-status fields under the same optimistic version check."""
    updated = Booking.objects.filter(pk=booking.pk, status=booking.status, version=booking.version).update(
        version=F('version') + 1, updated_at=timezone.now(), **fields
    )
    if not updated:
        raise StateConflictError('The booking was changed by someone else. Reload and try again.')
    booking.version += 1
    for name, value in fields.items():
        setattr(booking, name, value)
    return booking


def set_payment_status(payment: EscrowPayment, new_status: str) -> EscrowPayment:
    updated = EscrowPayment.objects.filter(pk=payment.pk, status=payment.status).update(
        status=new_status, updated_at=timezone.now()
    )
    if not updated:
        raise StateConflictError('The payment was changed by someone else. Reload and try again.')
    logger.info('Escrow payment %s: %s -> %s', payment.pk, payment.status, new_status)
    payment.status = new_status
    return payment


SETTLEMENTS = {
    LedgerEntry.TYPE_RELEASE: ('release', EscrowPayment.STATUS_RELEASED),
    LedgerEntry.TYPE_REFUND: ('refund', EscrowPayment.STATUS_REFUNDED),
}


def settle_payment(payment: EscrowPayment, entry_type: str, gateway: Optional[PaymentGateway] = None) -> ledger.Balance:
    """Release held funds to the provider or refund them to the customer."""
    if payment.status not in EscrowPayment.HELD_STATUSES:
        raise StateConflictError(f'A {payment.status} payment holds no funds.')
    method, new_status = SETTLEMENTS[entry_type]
    gateway = gateway or get_gateway()
    call_with_timeout(getattr(gateway, method), payment, gateway_key(method, payment))
    balance = ledger.record(payment.booking, entry_type, payment.amount)
    set_payment_status(payment, new_status)
    return balance
