"""Dispute resolver: freezes escrowed funds and settles them on resolution."""
from __future__ import annotations

import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import notifications
from .exceptions import AuthorizationError, DuplicateDispute, StateConflictError, ValidationError
from .models import Booking, Dispute, EscrowPayment, LedgerEntry, Notification, Profile
from .payments import PaymentGateway
from .transitions import set_booking_status, set_payment_status, settle_payment

logger = logging.getLogger(__name__)

OUTCOME_SETTLEMENT = {
    Dispute.OUTCOME_RELEASE: (LedgerEntry.TYPE_RELEASE, Booking.STATUS_COMPLETED),
    Dispute.OUTCOME_REFUND: (LedgerEntry.TYPE_REFUND, Booking.STATUS_CANCELLED),
}


def _require_staff(user) -> None:
    if user is None or not getattr(user, 'is_staff', False):
        raise AuthorizationError('Only marketplace staff can review disputes.')


def open_dispute(escrow_payment: EscrowPayment, reason: str, details: str, raised_by: Profile) -> Dispute:
    """Open a dispute and freeze the payment. Must run inside a transaction."""
    if not reason or not reason.strip():
        raise ValidationError('Please give a reason for the dispute.')
    if escrow_payment.disputes.filter(status__in=Dispute.UNRESOLVED_STATUSES).exists():
        raise DuplicateDispute()
    if escrow_payment.status != EscrowPayment.STATUS_COMPLETED:
        raise StateConflictError(f'A {escrow_payment.status} payment cannot be disputed.')

    try:
        with transaction.atomic():
            dispute = Dispute.objects.create(
                escrow_payment=escrow_payment,
                raised_by=raised_by,
                reason=reason.strip(),
                details=details or '',
            )
    except IntegrityError as exc:
        raise DuplicateDispute() from exc
    set_payment_status(escrow_payment, EscrowPayment.STATUS_DISPUTED)
    logger.info('Dispute %s opened on payment %s', dispute.pk, escrow_payment.pk)

    booking = escrow_payment.booking
    notifications.notify(
        booking.provider,
        Notification.TYPE_BOOKING,
        actor=raised_by,
        entity_id=booking.pk,
        message='A customer has disputed a payment for your booking.',
    )
    return dispute


def _lock_dispute(dispute: Dispute) -> Dispute:
    return (
        Dispute.objects.select_for_update()
        .select_related('escrow_payment__booking__customer', 'escrow_payment__booking__provider')
        .get(pk=dispute.pk)
    )


def mark_under_review(dispute: Dispute, actor) -> Dispute:
    _require_staff(actor)
    with transaction.atomic():
        dispute = _lock_dispute(dispute)
        if dispute.status != Dispute.STATUS_OPEN:
            raise StateConflictError(f'A {dispute.status} dispute cannot be moved to review.')
        dispute.status = Dispute.STATUS_UNDER_REVIEW
        dispute.save(update_fields=['status', 'updated_at'])
    return dispute


def resolve(dispute: Dispute, outcome: str, actor, gateway: Optional[PaymentGateway] = None) -> Dispute:
    """Settle the frozen funds one way or the other and close the dispute."""
    _require_staff(actor)
    if outcome not in OUTCOME_SETTLEMENT:
        raise ValidationError(f'Unknown dispute outcome: {outcome}')
    entry_type, booking_status = OUTCOME_SETTLEMENT[outcome]

    with transaction.atomic():
        dispute = _lock_dispute(dispute)
        if dispute.status not in Dispute.UNRESOLVED_STATUSES:
            raise StateConflictError('This dispute has already been resolved.')
        payment = dispute.escrow_payment
        booking = Booking.objects.select_for_update().get(pk=payment.booking_id)
        payment.booking = booking

        settle_payment(payment, entry_type, gateway=gateway)
        if booking.status not in Booking.TERMINAL_STATUSES:
            now = timezone.now()
            stamp = {'completed_at': now} if booking_status == Booking.STATUS_COMPLETED else {'cancelled_at': now}
            set_booking_status(booking, booking_status, resolution=True, **stamp)

        dispute.status = Dispute.STATUS_RESOLVED
        dispute.outcome = outcome
        dispute.resolved_by = actor
        dispute.resolved_at = timezone.now()
        dispute.save(update_fields=['status', 'outcome', 'resolved_by', 'resolved_at', 'updated_at'])
        logger.info('Dispute %s resolved: %s', dispute.pk, outcome)

        message = (
            'The dispute was resolved in favour of the provider.'
            if outcome == Dispute.OUTCOME_RELEASE
            else 'The dispute was resolved with a refund to the customer.'
        )
        for party in (booking.customer, booking.provider):
            notifications.notify(party, Notification.TYPE_BOOKING, entity_id=booking.pk, message=message)
    return dispute
