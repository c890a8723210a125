from django.contrib import admin

from .models import (
    Profile,
    Follow,
    Service,
    PayoutAccount,
    Booking,
    EscrowPayment,
    LedgerEntry,
    Dispute,
    Post,
    PostComment,
    PromotedPost,
    Review,
    Notification,
    Message,
    OutboxMessage,
)


class ServiceInline(admin.TabularInline):
    model = Service
    extra = 0


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ('username', 'user_role', 'kyc_verified', 'reviews_rating', 'followers_count', 'following_count')
    list_filter = ('user_role', 'kyc_verified')
    search_fields = ('username', 'user__email', 'business_name')
    inlines = [ServiceInline]


@admin.register(Follow)
class FollowAdmin(admin.ModelAdmin):
    list_display = ('follower', 'following', 'created_at')


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('title', 'provider', 'category', 'price', 'is_active')
    list_filter = ('category', 'is_active')
    search_fields = ('title', 'provider__username')


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ('provider', 'external_account_id', 'is_verified')
    list_filter = ('is_verified',)


class LedgerEntryInline(admin.TabularInline):
    model = LedgerEntry
    extra = 0
    can_delete = False
    readonly_fields = ('entry_type', 'amount', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('service', 'customer', 'provider', 'scheduled_time', 'status', 'refund_pending')
    list_filter = ('status', 'refund_pending', 'service_started')
    search_fields = ('customer__username', 'provider__username', 'service__title')
    readonly_fields = ('status', 'version', 'amount')
    inlines = [LedgerEntryInline]


@admin.register(EscrowPayment)
class EscrowPaymentAdmin(admin.ModelAdmin):
    list_display = ('booking', 'amount', 'platform_fee', 'status', 'transaction_id', 'created_at')
    list_filter = ('status',)
    readonly_fields = ('status', 'amount', 'platform_fee', 'provider_amount')


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('escrow_payment', 'raised_by', 'reason', 'status', 'outcome', 'created_at')
    list_filter = ('status', 'outcome')
    readonly_fields = ('status', 'outcome', 'resolved_by', 'resolved_at')


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ('author', 'content_type', 'is_deleted', 'created_at')
    list_filter = ('content_type', 'is_deleted')
    search_fields = ('author__username', 'caption')


@admin.register(PostComment)
class PostCommentAdmin(admin.ModelAdmin):
    list_display = ('post', 'user', 'created_at')


@admin.register(PromotedPost)
class PromotedPostAdmin(admin.ModelAdmin):
    list_display = ('post', 'owner', 'promotion_level', 'starts_at', 'ends_at', 'impressions', 'clicks')
    list_filter = ('promotion_level',)


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ('booking', 'rating', 'author', 'provider')
    list_filter = ('rating',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('recipient', 'notification_type', 'is_read', 'created_at')
    list_filter = ('notification_type', 'is_read')


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ('sender', 'receiver', 'is_read', 'is_deleted', 'created_at')
    list_filter = ('is_read', 'is_deleted')
    search_fields = ('sender__username', 'receiver__username')


@admin.register(OutboxMessage)
class OutboxMessageAdmin(admin.ModelAdmin):
    list_display = ('kind', 'idempotency_key', 'status', 'attempts', 'next_attempt_at')
    list_filter = ('kind', 'status')
    readonly_fields = ('payload', 'last_error', 'processed_at')
