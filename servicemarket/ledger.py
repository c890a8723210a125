"""Append-only escrow ledger.

Every movement of money for a booking is a ``LedgerEntry``; balances are never
stored, they are folded from entries. Each booking gets at most one hold and
at most one release or refund, so replaying a transition cannot move money twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from django.db import IntegrityError, transaction

from .exceptions import StateConflictError, ValidationError
from .models import Booking, LedgerEntry

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class Balance:
    holds: Decimal = ZERO
    released: Decimal = ZERO
    refunded: Decimal = ZERO

    @property
    def held(self) -> Decimal:
        return self.holds - self.released - self.refunded

    def apply(self, entry_type: str, amount: Decimal) -> 'Balance':
        if entry_type == LedgerEntry.TYPE_HOLD:
            return Balance(self.holds + amount, self.released, self.refunded)
        if entry_type == LedgerEntry.TYPE_RELEASE:
            return Balance(self.holds, self.released + amount, self.refunded)
        if entry_type == LedgerEntry.TYPE_REFUND:
            return Balance(self.holds, self.released, self.refunded + amount)
        raise ValidationError(f'Unknown ledger entry type: {entry_type}')


def fold(entries: Iterable[LedgerEntry]) -> Balance:
    balance = Balance()
    for entry in entries:
        balance = balance.apply(entry.entry_type, entry.amount)
    return balance


def balance_for(booking_id) -> Balance:
    """Reconstruct held/released/refunded totals for a booking."""
    return fold(LedgerEntry.objects.filter(booking_id=booking_id).order_by('created_at'))


def record(booking: Booking, entry_type: str, amount: Decimal) -> Balance:
    """Append one entry and return the booking's new balance.

    Releases and refunds can only draw on funds currently held, and only one
    release or refund may ever exist for a booking.
    """
    if amount is None or amount <= 0:
        raise ValidationError('Ledger amounts must be positive.')
    if entry_type not in dict(LedgerEntry.TYPE_CHOICES):
        raise ValidationError(f'Unknown ledger entry type: {entry_type}')

    current = balance_for(booking.pk)
    if entry_type == LedgerEntry.TYPE_HOLD:
        if current.holds > 0:
            raise StateConflictError('Funds are already held for this booking.')
    else:
        if current.released > 0 or current.refunded > 0:
            raise StateConflictError('Funds for this booking have already been settled.')
        if amount > current.held:
            raise StateConflictError('Cannot settle more than the amount held.')

    try:
        with transaction.atomic():
            LedgerEntry.objects.create(booking=booking, entry_type=entry_type, amount=amount)
    except IntegrityError as exc:
        raise StateConflictError(f'A {entry_type} entry already exists for this booking.') from exc

    balance = current.apply(entry_type, amount)
    logger.info('Ledger %s of %s for booking %s, held now %s', entry_type, amount, booking.pk, balance.held)
    return balance
