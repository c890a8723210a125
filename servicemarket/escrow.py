"""Booking lifecycle and escrow state machine.

    pending -> confirmed -> pending_completion -> completed
    pending/confirmed -> cancelled

Every command runs as one transaction covering the booking status, the ledger
entry and the escrow payment status, under a row lock on the booking. Views
call these functions; nothing else writes booking or payment status.

Funds of a completed booking stay held for ``DISPUTE_WINDOW_DAYS`` so the
customer can still dispute; the outbox releases them when the window closes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from . import notifications, outbox
from .disputes import open_dispute
from .exceptions import (
    ExternalServiceError,
    PayoutAccountMissing,
    RefundFailed,
    StateConflictError,
    ValidationError,
)
from .ledger import record
from .models import (
    Booking,
    Dispute,
    EscrowPayment,
    LedgerEntry,
    Notification,
    PayoutAccount,
    Profile,
    Service,
    compute_commission,
    is_slot_available,
)
from .payments import PaymentGateway, call_with_timeout, gateway_key, get_gateway
from .transitions import (
    lock_booking,
    require_party,
    set_booking_status,
    settle_payment,
    update_booking_flags,
)

logger = logging.getLogger(__name__)

REFUND_RETRY = 'refund_payment'
RELEASE_AFTER_WINDOW = 'release_payment'


@dataclass
class CancellationResult:
    booking: Booking
    refunded: bool = False
    refund_pending: bool = False


def create_booking(
    service: Service,
    customer: Profile,
    scheduled_time: datetime,
    location: str = '',
    notes: str = '',
) -> Booking:
    if not service.is_active:
        raise ValidationError('This service is not currently available.')
    if service.provider_id == customer.pk:
        raise ValidationError('You cannot book your own service.')
    if scheduled_time <= timezone.now():
        raise ValidationError('Pick a time in the future.')

    with transaction.atomic():
        # Serialize bookings for the same service so two requests cannot take one slot.
        Service.objects.select_for_update().filter(pk=service.pk).first()
        if not is_slot_available(service, scheduled_time):
            raise StateConflictError('This time slot is already booked.')
        booking = Booking.objects.create(
            service=service,
            customer=customer,
            provider_id=service.provider_id,
            scheduled_time=scheduled_time,
            location=location,
            notes=notes,
            amount=service.price,
        )
        notifications.notify(
            service.provider,
            Notification.TYPE_BOOKING,
            actor=customer,
            entity_id=booking.pk,
            message=f'New booking request for {service.title}.',
        )
    logger.info('Booking %s created for service %s', booking.pk, service.pk)
    return booking


def confirm(booking: Booking, actor: Profile, gateway: Optional[PaymentGateway] = None) -> Booking:
    """Provider accepts the booking; the customer's funds are captured into escrow."""
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'provider')
        if not booking.can_transition(Booking.STATUS_CONFIRMED):
            raise StateConflictError(f'A {booking.status} booking cannot be confirmed.')
        if not PayoutAccount.objects.filter(provider_id=booking.provider_id, is_verified=True).exists():
            raise PayoutAccountMissing()
        if booking.payment is not None:
            raise StateConflictError('This booking already has an escrow payment.')

        platform_fee, provider_amount = compute_commission(booking.amount)
        payment = EscrowPayment(
            booking=booking,
            amount=booking.amount,
            platform_fee=platform_fee,
            provider_amount=provider_amount,
        )
        gateway = gateway or get_gateway()
        reference = call_with_timeout(gateway.capture, payment, gateway_key('capture', payment))
        payment.transaction_id = reference or ''
        payment.status = EscrowPayment.STATUS_COMPLETED
        payment.save()
        record(booking, LedgerEntry.TYPE_HOLD, payment.amount)
        set_booking_status(booking, Booking.STATUS_CONFIRMED)

        notifications.notify(
            booking.customer,
            Notification.TYPE_BOOKING,
            actor=actor,
            entity_id=booking.pk,
            message=f'Your booking for {booking.service.title} has been confirmed.',
        )
    return booking


def mark_service_started(booking: Booking, actor: Profile) -> Booking:
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'provider')
        if booking.status != Booking.STATUS_CONFIRMED:
            raise StateConflictError(f'A {booking.status} booking cannot be started.')
        if booking.service_started:
            raise StateConflictError('The service has already started.')
        update_booking_flags(booking, service_started=True)
    return booking


def mark_service_done(booking: Booking, actor: Profile) -> Booking:
    """Provider reports the work finished; the customer still has to confirm."""
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'provider')
        set_booking_status(booking, Booking.STATUS_PENDING_COMPLETION, service_started=True)
        notifications.notify(
            booking.customer,
            Notification.TYPE_BOOKING,
            actor=actor,
            entity_id=booking.pk,
            message=f'{booking.service.title} is done. Please confirm completion.',
        )
    return booking


def confirm_completion(booking: Booking, actor: Profile, gateway: Optional[PaymentGateway] = None) -> Booking:
    """Customer accepts the work; escrowed funds go to the provider.

    With a dispute window configured the funds stay held until it closes and the
    release is queued for that moment. ``DISPUTE_WINDOW_DAYS = 0`` releases at once.
    """
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'customer')
        if not booking.can_transition(Booking.STATUS_COMPLETED):
            raise StateConflictError(f'A {booking.status} booking cannot be completed.')
        payment = booking.payment
        if payment is None:
            raise StateConflictError('This booking has no escrow payment.')
        if payment.status == EscrowPayment.STATUS_DISPUTED:
            raise StateConflictError('The payment is under dispute.')
        payment.booking = booking
        completed_at = timezone.now()
        if settings.DISPUTE_WINDOW_DAYS > 0:
            release_at = completed_at + timedelta(days=settings.DISPUTE_WINDOW_DAYS)
            outbox.enqueue(
                RELEASE_AFTER_WINDOW,
                {'payment_id': str(payment.pk)},
                f'release:{payment.pk}',
                available_at=release_at,
            )
            message = (
                f'{booking.service.title} is complete. '
                f'{payment.provider_amount} will be released on {release_at:%Y-%m-%d}.'
            )
        else:
            settle_payment(payment, LedgerEntry.TYPE_RELEASE, gateway=gateway)
            message = f'Payment of {payment.provider_amount} for {booking.service.title} has been released.'
        set_booking_status(booking, Booking.STATUS_COMPLETED, completed_at=completed_at)

        notifications.notify(
            booking.provider,
            Notification.TYPE_BOOKING,
            actor=actor,
            entity_id=booking.pk,
            message=message,
        )
    return booking


def dispute_window_open(booking: Booking, now: Optional[datetime] = None) -> bool:
    if booking.status != Booking.STATUS_COMPLETED:
        return True
    if booking.completed_at is None:
        return False
    now = now or timezone.now()
    return now - booking.completed_at <= timedelta(days=settings.DISPUTE_WINDOW_DAYS)


DISPUTABLE_STATUSES = (Booking.STATUS_CONFIRMED, Booking.STATUS_PENDING_COMPLETION, Booking.STATUS_COMPLETED)


def dispute(booking: Booking, actor: Profile, reason: str, details: str = '') -> Dispute:
    """Customer contests the work. Funds freeze; the booking keeps its status."""
    if not reason or not reason.strip():
        raise ValidationError('Please give a reason for the dispute.')
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'customer')
        if booking.status not in DISPUTABLE_STATUSES:
            raise StateConflictError(f'A {booking.status} booking cannot be disputed.')
        if not dispute_window_open(booking):
            raise StateConflictError('The dispute window for this booking has closed.')
        payment = booking.payment
        if payment is None:
            raise StateConflictError('This booking has no escrow payment.')
        payment.booking = booking
        return open_dispute(payment, reason, details, raised_by=actor)


def _refund_now(booking: Booking, payment: EscrowPayment, gateway: Optional[PaymentGateway]) -> None:
    payment.booking = booking
    try:
        with transaction.atomic():
            settle_payment(payment, LedgerEntry.TYPE_REFUND, gateway=gateway)
    except ExternalServiceError as exc:
        raise RefundFailed() from exc


def cancel(booking: Booking, actor: Profile, gateway: Optional[PaymentGateway] = None) -> CancellationResult:
    """Either party cancels before the service starts; held funds go back to the customer.

    A refund the gateway rejects does not block the cancellation: the booking is
    flagged ``refund_pending`` and the refund is queued for retry.
    """
    with transaction.atomic():
        booking = lock_booking(booking)
        require_party(booking, actor, 'customer', 'provider')
        if not booking.can_transition(Booking.STATUS_CANCELLED):
            raise StateConflictError(f'A {booking.status} booking cannot be cancelled.')
        if booking.service_started:
            raise StateConflictError('The service has already started and can no longer be cancelled.')

        result = CancellationResult(booking=booking)
        payment = booking.payment
        if payment is not None:
            if payment.status == EscrowPayment.STATUS_DISPUTED:
                raise StateConflictError('The payment is under dispute.')
            if payment.status == EscrowPayment.STATUS_COMPLETED:
                try:
                    _refund_now(booking, payment, gateway)
                    result.refunded = True
                except RefundFailed:
                    logger.warning('Refund for booking %s failed, queueing retry', booking.pk)
                    outbox.enqueue(REFUND_RETRY, {'payment_id': str(payment.pk)}, f'refund:{payment.pk}')
                    result.refund_pending = True

        set_booking_status(
            booking,
            Booking.STATUS_CANCELLED,
            cancelled_at=timezone.now(),
            refund_pending=result.refund_pending,
        )
        other = booking.provider if actor.pk == booking.customer_id else booking.customer
        notifications.notify(
            other,
            Notification.TYPE_BOOKING,
            actor=actor,
            entity_id=booking.pk,
            message=f'The booking for {booking.service.title} was cancelled.',
        )
    return result


@outbox.register(REFUND_RETRY)
def retry_refund(payload: dict) -> None:
    payment = (
        EscrowPayment.objects.select_for_update()
        .select_related('booking__customer', 'booking__service')
        .get(pk=payload['payment_id'])
    )
    booking = payment.booking
    if payment.status != EscrowPayment.STATUS_REFUNDED:
        if payment.status != EscrowPayment.STATUS_COMPLETED:
            raise StateConflictError(f'A {payment.status} payment cannot be refunded.')
        settle_payment(payment, LedgerEntry.TYPE_REFUND)
    Booking.objects.filter(pk=booking.pk).update(
        refund_pending=False, version=F('version') + 1, updated_at=timezone.now()
    )
    notifications.notify(
        booking.customer,
        Notification.TYPE_BOOKING,
        entity_id=booking.pk,
        message=f'Your refund of {payment.amount} for {booking.service.title} has been issued.',
    )
    logger.info('Queued refund for booking %s completed', booking.pk)


@outbox.register(RELEASE_AFTER_WINDOW)
def release_after_window(payload: dict) -> None:
    """Pay the provider once the dispute window of a completed booking has closed.

    A payment that is disputed or already settled is left to the dispute resolver.
    """
    payment = (
        EscrowPayment.objects.select_for_update()
        .select_related('booking__provider', 'booking__service')
        .get(pk=payload['payment_id'])
    )
    if payment.status != EscrowPayment.STATUS_COMPLETED:
        logger.info('Skipping scheduled release of %s payment %s', payment.status, payment.pk)
        return
    booking = payment.booking
    settle_payment(payment, LedgerEntry.TYPE_RELEASE)
    notifications.notify(
        booking.provider,
        Notification.TYPE_BOOKING,
        entity_id=booking.pk,
        message=f'Payment of {payment.provider_amount} for {booking.service.title} has been released.',
    )
    logger.info('Released payment for booking %s after the dispute window', booking.pk)
