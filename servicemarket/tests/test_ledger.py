from decimal import Decimal

from django.test import TestCase

from servicemarket import ledger
from servicemarket.exceptions import StateConflictError, ValidationError
from servicemarket.models import Booking, LedgerEntry

from .helpers import future, make_profile, make_provider, make_service


class LedgerTests(TestCase):
    def setUp(self):
        self.customer = make_profile('alice')
        self.provider = make_provider('bob')
        self.service = make_service(self.provider)
        self.booking = Booking.objects.create(
            service=self.service,
            customer=self.customer,
            provider=self.provider,
            scheduled_time=future(),
            amount=Decimal('100.00'),
        )

    def test_empty_booking_has_zero_balance(self):
        balance = ledger.balance_for(self.booking.pk)
        self.assertEqual(balance.held, Decimal('0.00'))

    def test_hold_then_release(self):
        ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))
        balance = ledger.record(self.booking, LedgerEntry.TYPE_RELEASE, Decimal('100.00'))
        self.assertEqual(balance.released, Decimal('100.00'))
        self.assertEqual(balance.held, Decimal('0.00'))
        self.assertEqual(ledger.balance_for(self.booking.pk), balance)

    def test_held_equals_holds_minus_settlements(self):
        ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))
        balance = ledger.record(self.booking, LedgerEntry.TYPE_REFUND, Decimal('40.00'))
        self.assertEqual(balance.held, balance.holds - balance.released - balance.refunded)
        self.assertEqual(balance.held, Decimal('60.00'))

    def test_cannot_settle_more_than_held(self):
        ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))
        with self.assertRaises(StateConflictError):
            ledger.record(self.booking, LedgerEntry.TYPE_RELEASE, Decimal('100.01'))
        self.assertFalse(self.booking.ledger_entries.filter(entry_type=LedgerEntry.TYPE_RELEASE).exists())

    def test_release_without_hold_rejected(self):
        with self.assertRaises(StateConflictError):
            ledger.record(self.booking, LedgerEntry.TYPE_RELEASE, Decimal('10.00'))

    def test_only_one_hold(self):
        ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))
        with self.assertRaises(StateConflictError):
            ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))

    def test_no_refund_after_release(self):
        ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('100.00'))
        ledger.record(self.booking, LedgerEntry.TYPE_RELEASE, Decimal('100.00'))
        with self.assertRaises(StateConflictError):
            ledger.record(self.booking, LedgerEntry.TYPE_REFUND, Decimal('100.00'))
        self.assertEqual(self.booking.ledger_entries.count(), 2)

    def test_rejects_non_positive_amounts(self):
        with self.assertRaises(ValidationError):
            ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('0.00'))
        with self.assertRaises(ValidationError):
            ledger.record(self.booking, LedgerEntry.TYPE_HOLD, Decimal('-5.00'))

    def test_rejects_unknown_entry_type(self):
        with self.assertRaises(ValidationError):
            ledger.record(self.booking, 'chargeback', Decimal('5.00'))
