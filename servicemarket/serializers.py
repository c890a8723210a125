"""Serializers for the marketplace API."""
from __future__ import annotations

from typing import Any

from rest_framework import serializers

from . import escrow, messaging, posts
from .models import (
    Booking,
    Dispute,
    EscrowPayment,
    LedgerEntry,
    Message,
    Notification,
    PayoutAccount,
    Post,
    PostComment,
    Profile,
    PromotedPost,
    Review,
    Service,
)


class ProfileSerializer(serializers.ModelSerializer):
    class Meta:
        model = Profile
        fields = [
            'id',
            'username',
            'user_role',
            'bio',
            'business_name',
            'kyc_verified',
            'reviews_rating',
            'reviews_count',
            'followers_count',
            'following_count',
        ]
        read_only_fields = [
            'id',
            'username',
            'kyc_verified',
            'reviews_rating',
            'reviews_count',
            'followers_count',
            'following_count',
        ]


class ProfileSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Profile
        fields = ['id', 'username', 'user_role', 'kyc_verified']


class RegisterSerializer(serializers.Serializer):
    username = serializers.CharField()
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, min_length=8)
    user_role = serializers.ChoiceField(choices=Profile.ROLE_CHOICES, default=Profile.ROLE_CUSTOMER)


class ServiceSerializer(serializers.ModelSerializer):
    provider = ProfileSummarySerializer(read_only=True)

    class Meta:
        model = Service
        fields = ['id', 'provider', 'title', 'description', 'category', 'price', 'is_active', 'created_at']
        read_only_fields = ['id', 'provider', 'created_at']


class PayoutAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutAccount
        fields = ['id', 'external_account_id', 'is_verified', 'created_at']
        read_only_fields = ['id', 'is_verified', 'created_at']


class EscrowPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = EscrowPayment
        fields = ['id', 'amount', 'platform_fee', 'provider_amount', 'status', 'transaction_id', 'created_at']


class BookingCreateSerializer(serializers.ModelSerializer):
    service_id = serializers.UUIDField(write_only=True)

    class Meta:
        model = Booking
        fields = ['id', 'service_id', 'scheduled_time', 'location', 'notes', 'status', 'amount']
        read_only_fields = ['id', 'status', 'amount']

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        try:
            attrs['service'] = Service.objects.select_related('provider').get(id=attrs.pop('service_id'))
        except Service.DoesNotExist as exc:
            raise serializers.ValidationError('Service not found') from exc
        return attrs

    def create(self, validated_data: dict[str, Any]) -> Booking:
        return escrow.create_booking(customer=self.context['request'].user.profile, **validated_data)


class BookingDetailSerializer(serializers.ModelSerializer):
    service = ServiceSerializer(read_only=True)
    customer = ProfileSummarySerializer(read_only=True)
    provider = ProfileSummarySerializer(read_only=True)
    escrow_payment = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            'id',
            'service',
            'customer',
            'provider',
            'scheduled_time',
            'location',
            'notes',
            'amount',
            'status',
            'service_started',
            'refund_pending',
            'completed_at',
            'cancelled_at',
            'escrow_payment',
            'created_at',
            'updated_at',
        ]

    def get_escrow_payment(self, obj: Booking):
        payment = obj.payment
        return EscrowPaymentSerializer(payment).data if payment else None


class DisputeCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255)
    details = serializers.CharField(required=False, allow_blank=True, default='')


class DisputeResolveSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=Dispute.OUTCOME_CHOICES)


class DisputeSerializer(serializers.ModelSerializer):
    raised_by = ProfileSummarySerializer(read_only=True)
    booking = serializers.UUIDField(source='escrow_payment.booking_id', read_only=True)

    class Meta:
        model = Dispute
        fields = [
            'id',
            'escrow_payment',
            'booking',
            'raised_by',
            'reason',
            'details',
            'status',
            'outcome',
            'resolved_at',
            'created_at',
        ]
        read_only_fields = fields


class LedgerEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = LedgerEntry
        fields = ['id', 'entry_type', 'amount', 'created_at']


class LedgerBalanceSerializer(serializers.Serializer):
    holds = serializers.DecimalField(max_digits=12, decimal_places=2)
    released = serializers.DecimalField(max_digits=12, decimal_places=2)
    refunded = serializers.DecimalField(max_digits=12, decimal_places=2)
    held = serializers.DecimalField(max_digits=12, decimal_places=2)


class PostSerializer(serializers.ModelSerializer):
    author = ProfileSummarySerializer(read_only=True)
    image_urls = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    like_count = serializers.SerializerMethodField()
    comment_count = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'author',
            'caption',
            'content_type',
            'image_urls',
            'like_count',
            'comment_count',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'author', 'content_type', 'created_at', 'updated_at']

    def get_like_count(self, obj: Post) -> int:
        return getattr(obj, 'like_count', None) or obj.likes.count()

    def get_comment_count(self, obj: Post) -> int:
        return getattr(obj, 'comment_count', None) or obj.comments.count()

    def create(self, validated_data: dict[str, Any]) -> Post:
        return posts.create_post(
            self.context['request'].user.profile,
            caption=validated_data.get('caption', ''),
            image_urls=validated_data.get('image_urls', []),
        )

    def update(self, instance: Post, validated_data: dict[str, Any]) -> Post:
        if 'image_urls' in self.initial_data:
            raise serializers.ValidationError({'image_urls': 'Images cannot be changed after posting.'})
        return posts.edit_caption(instance, self.context['request'].user.profile, validated_data.get('caption'))


class CommentSerializer(serializers.ModelSerializer):
    user = ProfileSummarySerializer(read_only=True)

    class Meta:
        model = PostComment
        fields = ['id', 'user', 'text', 'created_at']
        read_only_fields = ['id', 'user', 'created_at']


class FeedItemSerializer(serializers.Serializer):
    post = PostSerializer()
    score = serializers.FloatField()
    base_score = serializers.FloatField()
    is_promoted = serializers.BooleanField()
    promotion_level = serializers.CharField(allow_null=True)
    promotion_id = serializers.SerializerMethodField()

    def get_promotion_id(self, obj):
        return str(obj.promotion.pk) if obj.promotion else None


class ReviewSerializer(serializers.ModelSerializer):
    author = ProfileSummarySerializer(read_only=True)

    class Meta:
        model = Review
        fields = ['id', 'booking', 'author', 'provider', 'rating', 'comment', 'created_at', 'updated_at']
        read_only_fields = ['id', 'author', 'provider', 'created_at', 'updated_at']

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        booking: Booking = attrs['booking']
        profile = self.context['request'].user.profile
        if booking.customer_id != profile.pk:
            raise serializers.ValidationError('Only the customer can review this booking')
        if booking.status != Booking.STATUS_COMPLETED:
            raise serializers.ValidationError('Reviews are only allowed for completed bookings')
        if hasattr(booking, 'review'):
            raise serializers.ValidationError('A review already exists for this booking')
        attrs['provider'] = booking.provider
        return attrs

    def create(self, validated_data: dict[str, Any]) -> Review:
        validated_data['author'] = self.context['request'].user.profile
        return super().create(validated_data)


class NotificationSerializer(serializers.ModelSerializer):
    actor = ProfileSummarySerializer(read_only=True)

    class Meta:
        model = Notification
        fields = ['id', 'actor', 'notification_type', 'entity_id', 'message', 'is_read', 'created_at']
        read_only_fields = fields


class PromotedPostSerializer(serializers.ModelSerializer):
    class Meta:
        model = PromotedPost
        fields = [
            'id',
            'post',
            'promotion_level',
            'starts_at',
            'ends_at',
            'budget',
            'target_audience',
            'impressions',
            'clicks',
            'created_at',
        ]
        read_only_fields = fields


class PromotionCreateSerializer(serializers.Serializer):
    promotion_level = serializers.ChoiceField(choices=PromotedPost.LEVEL_CHOICES)
    starts_at = serializers.DateTimeField(required=False)
    ends_at = serializers.DateTimeField(required=False)
    budget = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    target_audience = serializers.CharField(required=False, allow_blank=True, max_length=255)


class MessageSerializer(serializers.ModelSerializer):
    sender = ProfileSummarySerializer(read_only=True)
    receiver = serializers.PrimaryKeyRelatedField(queryset=Profile.objects.all())

    class Meta:
        model = Message
        fields = ['id', 'sender', 'receiver', 'content', 'is_read', 'is_deleted', 'created_at']
        read_only_fields = ['id', 'sender', 'is_read', 'is_deleted', 'created_at']

    def create(self, validated_data: dict[str, Any]) -> Message:
        return messaging.send_message(
            self.context['request'].user.profile,
            validated_data['receiver'],
            validated_data['content'],
        )


class ConversationSerializer(serializers.Serializer):
    partner = ProfileSummarySerializer()
    last_message = MessageSerializer()
    unread = serializers.IntegerField()
