from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase, override_settings
from django.utils import timezone

from servicemarket import disputes, escrow, ledger
from servicemarket.exceptions import (
    AuthorizationError,
    DuplicateDispute,
    StateConflictError,
    ValidationError,
)
from servicemarket.models import Booking, Dispute, EscrowPayment, LedgerEntry, Notification

from .helpers import future, make_profile, make_provider, make_service


class DisputeTests(TestCase):
    def setUp(self):
        self.customer = make_profile('alice')
        self.provider = make_provider('bob')
        self.service = make_service(self.provider, price='80.00')
        self.staff = User.objects.create_user(username='ops', password='pass12345', is_staff=True)
        booking = escrow.create_booking(self.service, self.customer, future())
        self.booking = escrow.confirm(booking, self.provider)

    def open(self, reason='No-show'):
        return escrow.dispute(self.booking, self.customer, reason)

    def test_dispute_freezes_payment_and_keeps_booking_status(self):
        opened = self.open()
        self.assertEqual(opened.status, Dispute.STATUS_OPEN)
        payment = EscrowPayment.objects.get(booking=self.booking)
        self.assertEqual(payment.status, EscrowPayment.STATUS_DISPUTED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_CONFIRMED)
        self.assertNotIn('disputed', dict(Booking.STATUS_CHOICES))
        self.assertEqual(ledger.balance_for(self.booking.pk).held, Decimal('80.00'))

    def test_second_dispute_is_duplicate(self):
        self.open()
        with self.assertRaises(DuplicateDispute):
            self.open('Again')
        self.assertEqual(Dispute.objects.count(), 1)

    def test_dispute_under_review_still_blocks_new_one(self):
        disputes.mark_under_review(self.open(), self.staff)
        with self.assertRaises(DuplicateDispute):
            self.open('Still unhappy')

    def test_requires_reason(self):
        with self.assertRaises(ValidationError):
            self.open('   ')

    def test_only_customer_disputes(self):
        with self.assertRaises(AuthorizationError):
            escrow.dispute(self.booking, self.provider, 'Customer rude')

    def test_pending_booking_cannot_be_disputed(self):
        other = escrow.create_booking(self.service, self.customer, future(48))
        with self.assertRaises(StateConflictError):
            escrow.dispute(other, self.customer, 'Changed my mind')

    @override_settings(DISPUTE_WINDOW_DAYS=7)
    def test_completed_booking_disputed_within_window(self):
        escrow.mark_service_done(self.booking, self.provider)
        escrow.confirm_completion(self.booking, self.customer)

        opened = self.open('Shoddy work')

        payment = EscrowPayment.objects.get(booking=self.booking)
        self.assertEqual(opened.escrow_payment, payment)
        self.assertEqual(payment.status, EscrowPayment.STATUS_DISPUTED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_COMPLETED)
        self.assertEqual(ledger.balance_for(self.booking.pk).held, Decimal('80.00'))

        disputes.resolve(opened, Dispute.OUTCOME_REFUND, self.staff)
        escrow.release_after_window({'payment_id': str(payment.pk)})

        payment.refresh_from_db()
        self.assertEqual(payment.status, EscrowPayment.STATUS_REFUNDED)
        balance = ledger.balance_for(self.booking.pk)
        self.assertEqual(balance.refunded, Decimal('80.00'))
        self.assertEqual(balance.released, Decimal('0.00'))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_COMPLETED)

    @override_settings(DISPUTE_WINDOW_DAYS=7)
    def test_completed_booking_after_window_cannot_be_disputed(self):
        escrow.mark_service_done(self.booking, self.provider)
        escrow.confirm_completion(self.booking, self.customer)
        Booking.objects.filter(pk=self.booking.pk).update(completed_at=timezone.now() - timedelta(days=8))
        with self.assertRaises(StateConflictError):
            self.open()

    @override_settings(DISPUTE_WINDOW_DAYS=0)
    def test_released_payment_cannot_be_disputed(self):
        escrow.mark_service_done(self.booking, self.provider)
        escrow.confirm_completion(self.booking, self.customer)
        with self.assertRaises(StateConflictError):
            self.open()

    def test_dispute_window_closes(self):
        self.booking.status = Booking.STATUS_COMPLETED
        self.booking.completed_at = timezone.now() - timedelta(days=30)
        self.assertFalse(escrow.dispute_window_open(self.booking))
        self.booking.completed_at = timezone.now() - timedelta(days=1)
        self.assertTrue(escrow.dispute_window_open(self.booking))

    def test_disputed_payment_blocks_completion_and_cancel(self):
        self.open()
        escrow.mark_service_done(self.booking, self.provider)
        with self.assertRaises(StateConflictError):
            escrow.confirm_completion(self.booking, self.customer)
        other = escrow.confirm(escrow.create_booking(self.service, self.customer, future(72)), self.provider)
        escrow.dispute(other, self.customer, 'Wrong address')
        with self.assertRaises(StateConflictError):
            escrow.cancel(other, self.customer)

    def test_resolve_release_to_provider(self):
        opened = self.open()
        with self.captureOnCommitCallbacks(execute=True):
            resolved = disputes.resolve(opened, Dispute.OUTCOME_RELEASE, self.staff)

        self.assertEqual(resolved.status, Dispute.STATUS_RESOLVED)
        self.assertEqual(resolved.resolved_by, self.staff)
        self.assertIsNotNone(resolved.resolved_at)
        payment = EscrowPayment.objects.get(booking=self.booking)
        self.assertEqual(payment.status, EscrowPayment.STATUS_RELEASED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_COMPLETED)
        balance = ledger.balance_for(self.booking.pk)
        self.assertEqual(balance.released, Decimal('80.00'))
        self.assertEqual(balance.held, Decimal('0.00'))
        self.assertEqual(Notification.objects.filter(entity_id=str(self.booking.pk)).count(), 2)

    def test_resolve_refund_to_customer(self):
        opened = self.open()
        disputes.resolve(opened, Dispute.OUTCOME_REFUND, self.staff)

        payment = EscrowPayment.objects.get(booking=self.booking)
        self.assertEqual(payment.status, EscrowPayment.STATUS_REFUNDED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_CANCELLED)
        self.assertIsNotNone(self.booking.cancelled_at)
        self.assertEqual(
            self.booking.ledger_entries.filter(entry_type=LedgerEntry.TYPE_REFUND).get().amount,
            Decimal('80.00'),
        )

    def test_resolve_twice_conflicts(self):
        opened = self.open()
        disputes.resolve(opened, Dispute.OUTCOME_REFUND, self.staff)
        with self.assertRaises(StateConflictError):
            disputes.resolve(opened, Dispute.OUTCOME_RELEASE, self.staff)
        self.assertEqual(self.booking.ledger_entries.count(), 2)

    def test_resolution_leaves_no_unresolved_dispute(self):
        disputes.resolve(self.open(), Dispute.OUTCOME_RELEASE, self.staff)
        self.assertFalse(
            Dispute.objects.filter(status__in=Dispute.UNRESOLVED_STATUSES).exists()
        )

    def test_only_staff_resolves(self):
        opened = self.open()
        with self.assertRaises(AuthorizationError):
            disputes.resolve(opened, Dispute.OUTCOME_RELEASE, self.customer.user)
        with self.assertRaises(AuthorizationError):
            disputes.mark_under_review(opened, self.provider.user)
        opened.refresh_from_db()
        self.assertEqual(opened.status, Dispute.STATUS_OPEN)

    def test_unknown_outcome_rejected(self):
        with self.assertRaises(ValidationError):
            disputes.resolve(self.open(), 'split', self.staff)
