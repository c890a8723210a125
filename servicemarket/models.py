"""Domain models for the local services marketplace."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.db.models import Avg, Count, Q
from django.db.models.functions import Lower


class BaseModel(models.Model):
    """Base model that uses UUID primary keys for consistency."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


class TimestampedModel(BaseModel):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Profile(TimestampedModel):
    ROLE_CUSTOMER = 'customer'
    ROLE_BUSINESS = 'business'
    ROLE_CHOICES = [
        (ROLE_CUSTOMER, 'Customer'),
        (ROLE_BUSINESS, 'Business'),
    ]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='profile')
    username = models.CharField(max_length=30)
    user_role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_CUSTOMER)
    bio = models.TextField(blank=True)
    business_name = models.CharField(max_length=255, blank=True)
    kyc_verified = models.BooleanField(default=False)
    reviews_rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('0.00'))
    reviews_count = models.PositiveIntegerField(default=0)
    followers_count = models.PositiveIntegerField(default=0)
    following_count = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(Lower('username'), name='unique_profile_username_ci'),
        ]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Profile({self.username})"

    @transaction.atomic
    def recalc_ratings(self) -> None:
        """Recalculate rating aggregates from reviews."""
        aggregates = Review.objects.filter(provider=self).aggregate(avg=Avg('rating'), count=Count('id'))
        avg = aggregates['avg']
        self.reviews_rating = Decimal(avg).quantize(Decimal('0.01')) if avg else Decimal('0.00')
        self.reviews_count = aggregates['count'] or 0
        self.save(update_fields=['reviews_rating', 'reviews_count', 'updated_at'])

    @transaction.atomic
    def resync_follow_counts(self) -> bool:
        """Recompute denormalized follow counters from edges. Returns True if they had drifted."""
        followers = Follow.objects.filter(following=self).count()
        following = Follow.objects.filter(follower=self).count()
        drifted = (followers, following) != (self.followers_count, self.following_count)
        if drifted:
            self.followers_count = followers
            self.following_count = following
            self.save(update_fields=['followers_count', 'following_count', 'updated_at'])
        return drifted


class Follow(BaseModel):
    follower = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='following_edges')
    following = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='follower_edges')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('follower', 'following')


class Service(TimestampedModel):
    provider = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='services')
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=100, blank=True, db_index=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:  # pragma: no cover
        return self.title


class PayoutAccount(TimestampedModel):
    provider = models.OneToOneField(Profile, on_delete=models.CASCADE, related_name='payout_account')
    external_account_id = models.CharField(max_length=255)
    is_verified = models.BooleanField(default=False)


class Booking(TimestampedModel):
    STATUS_PENDING = 'pending'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_PENDING_COMPLETION = 'pending_completion'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_PENDING_COMPLETION, 'Awaiting confirmation'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='bookings')
    customer = models.ForeignKey(Profile, on_delete=models.PROTECT, related_name='bookings_as_customer')
    provider = models.ForeignKey(Profile, on_delete=models.PROTECT, related_name='bookings_as_provider')
    scheduled_time = models.DateTimeField(db_index=True)
    location = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    service_started = models.BooleanField(default=False)
    refund_pending = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        indexes = [models.Index(fields=['status', 'scheduled_time'], name='booking_status_sched_idx')]

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_PENDING_COMPLETION)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    ALLOWED_TRANSITIONS = {
        STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
        STATUS_CONFIRMED: {STATUS_PENDING_COMPLETION, STATUS_CANCELLED},
        STATUS_PENDING_COMPLETION: {STATUS_COMPLETED},
    }

    # Only a dispute resolution may settle a funded booking directly.
    RESOLUTION_TRANSITIONS = {
        STATUS_CONFIRMED: {STATUS_COMPLETED, STATUS_CANCELLED},
        STATUS_PENDING_COMPLETION: {STATUS_COMPLETED, STATUS_CANCELLED},
    }

    def __str__(self) -> str:  # pragma: no cover
        return f"Booking({self.id}, {self.status})"

    def can_transition(self, new_status: str, resolution: bool = False) -> bool:
        table = self.RESOLUTION_TRANSITIONS if resolution else self.ALLOWED_TRANSITIONS
        return new_status in table.get(self.status, set())

    @property
    def payment(self) -> Optional['EscrowPayment']:
        try:
            return self.escrow_payment
        except EscrowPayment.DoesNotExist:
            return None


class EscrowPayment(TimestampedModel):
    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_RELEASED = 'released'
    STATUS_REFUNDED = 'refunded'
    STATUS_DISPUTED = 'disputed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Held'),
        (STATUS_RELEASED, 'Released'),
        (STATUS_REFUNDED, 'Refunded'),
        (STATUS_DISPUTED, 'Disputed'),
    ]

    HELD_STATUSES = (STATUS_COMPLETED, STATUS_DISPUTED)

    booking = models.OneToOneField(Booking, on_delete=models.PROTECT, related_name='escrow_payment')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    provider_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    transaction_id = models.CharField(max_length=255, blank=True)


class LedgerEntry(BaseModel):
    TYPE_HOLD = 'hold'
    TYPE_RELEASE = 'release'
    TYPE_REFUND = 'refund'
    TYPE_CHOICES = [
        (TYPE_HOLD, 'Hold'),
        (TYPE_RELEASE, 'Release'),
        (TYPE_REFUND, 'Refund'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name='ledger_entries')
    entry_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']
        unique_together = ('booking', 'entry_type')


class Dispute(TimestampedModel):
    STATUS_OPEN = 'open'
    STATUS_UNDER_REVIEW = 'under_review'
    STATUS_RESOLVED = 'resolved'
    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_UNDER_REVIEW, 'Under review'),
        (STATUS_RESOLVED, 'Resolved'),
    ]
    UNRESOLVED_STATUSES = (STATUS_OPEN, STATUS_UNDER_REVIEW)

    OUTCOME_RELEASE = 'release_to_provider'
    OUTCOME_REFUND = 'refund_to_customer'
    OUTCOME_CHOICES = [
        (OUTCOME_RELEASE, 'Release to provider'),
        (OUTCOME_REFUND, 'Refund to customer'),
    ]

    escrow_payment = models.ForeignKey(EscrowPayment, on_delete=models.PROTECT, related_name='disputes')
    raised_by = models.ForeignKey(Profile, on_delete=models.PROTECT, related_name='disputes_raised')
    reason = models.CharField(max_length=255)
    details = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_OPEN, db_index=True)
    outcome = models.CharField(max_length=30, choices=OUTCOME_CHOICES, blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['escrow_payment'],
                condition=Q(status__in=['open', 'under_review']),
                name='one_unresolved_dispute_per_payment',
            ),
        ]


class Post(TimestampedModel):
    CONTENT_IMAGE = 'image'
    CONTENT_TEXT = 'text'
    CONTENT_CHOICES = [
        (CONTENT_IMAGE, 'Image'),
        (CONTENT_TEXT, 'Text'),
    ]

    author = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='posts')
    caption = models.TextField(blank=True)
    content_type = models.CharField(max_length=10, choices=CONTENT_CHOICES, default=CONTENT_TEXT)
    image_urls = models.JSONField(default=list, blank=True)
    legacy_image_url = models.TextField(blank=True)
    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:  # pragma: no cover
        return f"Post({self.id})"


class PostLike(BaseModel):
    user = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='post_likes')
    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='likes')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('user', 'post')


class PostComment(TimestampedModel):
    user = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='post_comments')
    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='comments')
    text = models.TextField()

    class Meta:
        ordering = ['created_at']


class PromotedPost(TimestampedModel):
    LEVEL_BASIC = 'basic'
    LEVEL_PREMIUM = 'premium'
    LEVEL_FEATURED = 'featured'
    LEVEL_CHOICES = [
        (LEVEL_BASIC, 'Basic'),
        (LEVEL_PREMIUM, 'Premium'),
        (LEVEL_FEATURED, 'Featured'),
    ]
    TIER_RANK = {LEVEL_BASIC: 1, LEVEL_PREMIUM: 2, LEVEL_FEATURED: 3}

    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='promotions')
    owner = models.ForeignKey(Profile, on_delete=models.SET_NULL, null=True, blank=True, related_name='promotions')
    promotion_level = models.CharField(max_length=10, choices=LEVEL_CHOICES)
    starts_at = models.DateTimeField(db_index=True)
    ends_at = models.DateTimeField(db_index=True)
    budget = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    target_audience = models.CharField(max_length=255, blank=True)
    impressions = models.PositiveIntegerField(default=0)
    clicks = models.PositiveIntegerField(default=0)

    def is_active_at(self, moment: datetime) -> bool:
        return self.starts_at <= moment <= self.ends_at


class PromotionImpression(BaseModel):
    promoted_post = models.ForeignKey(PromotedPost, on_delete=models.CASCADE, related_name='impression_records')
    session_key = models.CharField(max_length=64)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('promoted_post', 'session_key')


class Review(TimestampedModel):
    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='review')
    author = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='reviews_written')
    provider = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='reviews_received')
    rating = models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(5)])
    comment = models.TextField(blank=True)

    class Meta:
        ordering = ['-created_at']

    def save(self, *args, **kwargs):
        is_new = self._state.adding
        super().save(*args, **kwargs)
        if is_new:
            self.provider.recalc_ratings()


class Notification(TimestampedModel):
    TYPE_FOLLOW = 'follow'
    TYPE_LIKE = 'like'
    TYPE_COMMENT = 'comment'
    TYPE_MESSAGE = 'message'
    TYPE_SERVICE = 'service'
    TYPE_REVIEW = 'review'
    TYPE_MENTION = 'mention'
    TYPE_BOOKING = 'booking'
    TYPE_GENERAL = 'general'
    TYPE_CHOICES = [
        (TYPE_FOLLOW, 'Follow'),
        (TYPE_LIKE, 'Like'),
        (TYPE_COMMENT, 'Comment'),
        (TYPE_MESSAGE, 'Message'),
        (TYPE_SERVICE, 'Service'),
        (TYPE_REVIEW, 'Review'),
        (TYPE_MENTION, 'Mention'),
        (TYPE_BOOKING, 'Booking'),
        (TYPE_GENERAL, 'General'),
    ]

    recipient = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='notifications')
    actor = models.ForeignKey(Profile, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    notification_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_GENERAL)
    entity_id = models.CharField(max_length=64, blank=True)
    message = models.TextField()
    is_read = models.BooleanField(default=False)

    class Meta:
        ordering = ['-created_at']


class Message(TimestampedModel):
    DELETED_TEXT = '[This message was deleted]'

    sender = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='messages_sent')
    receiver = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name='messages_received')
    content = models.TextField()
    is_read = models.BooleanField(default=False)
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']
        indexes = [models.Index(fields=['receiver', 'is_read'], name='message_receiver_read_idx')]

    def __str__(self) -> str:  # pragma: no cover
        return f"Message({self.sender_id} -> {self.receiver_id})"


class OutboxMessage(TimestampedModel):
    STATUS_PENDING = 'pending'
    STATUS_DONE = 'done'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_DONE, 'Done'),
        (STATUS_FAILED, 'Failed'),
    ]

    kind = models.CharField(max_length=50)
    payload = models.JSONField(default=dict)
    idempotency_key = models.CharField(max_length=128, unique=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    attempts = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField()
    last_error = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['next_attempt_at']
        indexes = [models.Index(fields=['status', 'next_attempt_at'], name='outbox_status_next_idx')]


# Utility functions


def is_slot_available(service: Service, scheduled_time: datetime) -> bool:
    """A service can only be booked once per scheduled time while that booking is active."""
    return not service.bookings.filter(
        status__in=Booking.ACTIVE_STATUSES,
        scheduled_time=scheduled_time,
    ).exists()


def compute_commission(amount: Decimal) -> tuple[Decimal, Decimal]:
    platform_fee = (amount * settings.PLATFORM_FEE_PERCENT).quantize(Decimal('0.01'))
    provider_amount = amount - platform_fee
    return platform_fee, provider_amount
