"""API views for the service marketplace.

Views only parse requests and dispatch to the domain modules; every rule lives
in ``escrow``, ``disputes``, ``feed``, ``posts``, ``promotions``, ``messaging``
and their siblings.
"""
from __future__ import annotations

from django.contrib.auth import authenticate
from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, mixins, permissions, status, viewsets
from rest_framework.authtoken.models import Token
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.response import Response

from . import (
    disputes,
    escrow,
    feed,
    ledger,
    messaging,
    notifications,
    posts,
    promotions,
    social,
    usernames,
)
from .exceptions import StateConflictError
from .models import (
    Booking,
    Dispute,
    Message,
    Notification,
    PayoutAccount,
    Post,
    Profile,
    PromotedPost,
    Review,
    Service,
)
from .serializers import (
    BookingCreateSerializer,
    BookingDetailSerializer,
    CommentSerializer,
    ConversationSerializer,
    DisputeCreateSerializer,
    DisputeResolveSerializer,
    DisputeSerializer,
    FeedItemSerializer,
    LedgerBalanceSerializer,
    LedgerEntrySerializer,
    MessageSerializer,
    NotificationSerializer,
    PayoutAccountSerializer,
    PostSerializer,
    ProfileSerializer,
    PromotedPostSerializer,
    PromotionCreateSerializer,
    RegisterSerializer,
    ReviewSerializer,
    ServiceSerializer,
)


class RegisterView(generics.CreateAPIView):
    permission_classes = [permissions.AllowAny]
    serializer_class = RegisterSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        username = usernames.validate_username(data['username'])
        with transaction.atomic():
            if usernames.check_availability(username) != usernames.AVAILABLE:
                raise StateConflictError('That username is already taken.')
            user = User.objects.create_user(
                username=username,
                email=data.get('email', ''),
                password=data['password'],
            )
            profile = Profile.objects.create(user=user, username=username, user_role=data['user_role'])
        return Response(ProfileSerializer(profile).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def login_view(request):
    user = authenticate(username=request.data.get('username'), password=request.data.get('password'))
    if not user:
        return Response({'detail': 'Invalid credentials'}, status=status.HTTP_400_BAD_REQUEST)
    token, _ = Token.objects.get_or_create(user=user)
    return Response({'token': token.key})


class MeView(generics.RetrieveUpdateAPIView):
    serializer_class = ProfileSerializer

    def get_object(self):
        return self.request.user.profile


@api_view(['GET'])
@permission_classes([permissions.AllowAny])
def username_check_view(request):
    candidate = request.query_params.get('username', '')
    excluding = request.user.pk if request.user.is_authenticated else None
    return Response({'username': candidate, 'status': usernames.check_availability(candidate, excluding)})


class ServiceViewSet(viewsets.ModelViewSet):
    serializer_class = ServiceSerializer
    filterset_fields = ['category', 'is_active']
    search_fields = ['title', 'description', 'provider__username']
    ordering_fields = ['price', 'created_at']

    def get_queryset(self):
        qs = Service.objects.select_related('provider')
        if self.action in ('update', 'partial_update', 'destroy'):
            return qs.filter(provider=self.request.user.profile)
        return qs.filter(Q(is_active=True) | Q(provider=self.request.user.profile))

    def perform_create(self, serializer):
        serializer.save(provider=self.request.user.profile)

    def perform_destroy(self, instance):
        instance.is_active = False
        instance.save(update_fields=['is_active', 'updated_at'])


class PayoutAccountView(generics.RetrieveUpdateAPIView):
    """The provider's payout account; verification is set by the payment provider integration."""

    serializer_class = PayoutAccountSerializer

    def get_object(self):
        profile = self.request.user.profile
        try:
            return profile.payout_account
        except PayoutAccount.DoesNotExist:
            return PayoutAccount(provider=profile)

    def perform_update(self, serializer):
        serializer.save(provider=self.request.user.profile, is_verified=False)


class BookingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Booking.objects.select_related('service', 'customer', 'provider', 'escrow_payment')

    def get_serializer_class(self):
        if self.action == 'create':
            return BookingCreateSerializer
        return BookingDetailSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        profile = self.request.user.profile
        if self.request.query_params.get('as') == 'provider':
            qs = qs.filter(provider=profile)
        elif self.action == 'list':
            qs = qs.filter(customer=profile)
        else:
            qs = qs.filter(Q(customer=profile) | Q(provider=profile))
        status_filter = self.request.query_params.get('status')
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def _respond(self, booking, **extra):
        booking.refresh_from_db()
        data = BookingDetailSerializer(booking).data
        data.update(extra)
        return Response(data)

    @action(detail=True, methods=['post'])
    def confirm(self, request, pk=None):
        booking = escrow.confirm(self.get_object(), request.user.profile)
        return self._respond(booking)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        booking = escrow.mark_service_started(self.get_object(), request.user.profile)
        return self._respond(booking)

    @action(detail=True, methods=['post'], url_path='mark-done')
    def mark_done(self, request, pk=None):
        booking = escrow.mark_service_done(self.get_object(), request.user.profile)
        return self._respond(booking)

    @action(detail=True, methods=['post'], url_path='confirm-completion')
    def confirm_completion(self, request, pk=None):
        booking = escrow.confirm_completion(self.get_object(), request.user.profile)
        return self._respond(booking)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        result = escrow.cancel(self.get_object(), request.user.profile)
        return self._respond(result.booking, refunded=result.refunded)

    @action(detail=True, methods=['post'])
    def dispute(self, request, pk=None):
        serializer = DisputeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        opened = escrow.dispute(
            self.get_object(),
            request.user.profile,
            serializer.validated_data['reason'],
            serializer.validated_data['details'],
        )
        return Response(DisputeSerializer(opened).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def ledger(self, request, pk=None):
        booking = self.get_object()
        balance = ledger.balance_for(booking.pk)
        return Response(
            {
                'balance': LedgerBalanceSerializer(
                    {
                        'holds': balance.holds,
                        'released': balance.released,
                        'refunded': balance.refunded,
                        'held': balance.held,
                    }
                ).data,
                'entries': LedgerEntrySerializer(booking.ledger_entries.all(), many=True).data,
            }
        )


class DisputeViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = DisputeSerializer
    filterset_fields = ['status']

    def get_queryset(self):
        qs = Dispute.objects.select_related('escrow_payment', 'raised_by')
        if self.request.user.is_staff:
            return qs
        profile = self.request.user.profile
        return qs.filter(
            Q(escrow_payment__booking__customer=profile) | Q(escrow_payment__booking__provider=profile)
        )

    @action(detail=True, methods=['post'])
    def review(self, request, pk=None):
        dispute = disputes.mark_under_review(self.get_object(), request.user)
        return Response(DisputeSerializer(dispute).data)

    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        serializer = DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = disputes.resolve(self.get_object(), serializer.validated_data['outcome'], request.user)
        return Response(DisputeSerializer(dispute).data)


class PostViewSet(viewsets.ModelViewSet):
    serializer_class = PostSerializer

    def get_queryset(self):
        qs = (
            Post.objects.filter(is_deleted=False)
            .select_related('author')
            .annotate(like_count=Count('likes', distinct=True), comment_count=Count('comments', distinct=True))
        )
        author = self.request.query_params.get('author')
        if author:
            qs = qs.filter(author_id=author)
        return qs

    def perform_destroy(self, instance):
        posts.soft_delete_post(instance, self.request.user.profile)

    @action(detail=True, methods=['post'])
    def like(self, request, pk=None):
        created = posts.like_post(self.get_object(), request.user.profile)
        return Response({'liked': True}, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @action(detail=True, methods=['post'])
    def unlike(self, request, pk=None):
        posts.unlike_post(self.get_object(), request.user.profile)
        return Response({'liked': False})

    @action(detail=True, methods=['get', 'post'])
    def comments(self, request, pk=None):
        post = self.get_object()
        if request.method == 'POST':
            serializer = CommentSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            comment = posts.add_comment(post, request.user.profile, serializer.validated_data['text'])
            return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)
        return Response(CommentSerializer(post.comments.select_related('user'), many=True).data)

    @action(detail=True, methods=['post'])
    def promote(self, request, pk=None):
        serializer = PromotionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        promotion = promotions.promote_post(
            self.get_object(),
            request.user.profile,
            data['promotion_level'],
            starts_at=data.get('starts_at'),
            ends_at=data.get('ends_at'),
            budget=data.get('budget'),
            target_audience=data.get('target_audience', ''),
        )
        return Response(PromotedPostSerializer(promotion).data, status=status.HTTP_201_CREATED)


class PromotionViewSet(viewsets.ReadOnlyModelViewSet):
    """The requesting user's own promotions."""

    serializer_class = PromotedPostSerializer

    def get_queryset(self):
        return PromotedPost.objects.filter(owner=self.request.user.profile).order_by('-starts_at')

    @action(detail=True, methods=['post'])
    def end(self, request, pk=None):
        promotion = promotions.end_promotion(self.get_object(), request.user.profile)
        return Response(self.get_serializer(promotion).data)


class MessageViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = MessageSerializer

    def get_queryset(self):
        profile = self.request.user.profile
        return Message.objects.filter(Q(sender=profile) | Q(receiver=profile)).select_related('sender')

    def list(self, request, *args, **kwargs):
        """``?with=<profile id>`` returns that thread and marks it read."""
        partner_id = request.query_params.get('with')
        if not partner_id:
            return super().list(request, *args, **kwargs)
        partner = generics.get_object_or_404(Profile.objects.all(), pk=partner_id)
        thread = messaging.conversation(request.user.profile, partner)
        return Response(self.get_serializer(thread, many=True).data)

    @action(detail=False, methods=['get'])
    def conversations(self, request):
        summaries = messaging.conversations(request.user.profile)
        return Response(ConversationSerializer(summaries, many=True).data)

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        return Response({'unread': messaging.unread_count(request.user.profile)})

    def destroy(self, request, *args, **kwargs):
        message = messaging.delete_message(self.get_object(), request.user.profile)
        return Response(self.get_serializer(message).data)


class FeedView(generics.GenericAPIView):
    serializer_class = FeedItemSerializer

    def get(self, request, *args, **kwargs):
        try:
            page = max(int(request.query_params.get('page', 0)), 0)
        except ValueError:
            page = 0
        profile = request.user.profile
        session_key = request.query_params.get('session') or f'{profile.pk}:{timezone.now():%Y%m%d}'
        result = feed.get_feed(profile, page=page, session_key=session_key)
        return Response(
            {
                'page': result.page,
                'has_more': result.has_more,
                'results': self.get_serializer(result.items, many=True).data,
            }
        )


@api_view(['POST'])
def promotion_click_view(request, pk):
    feed.record_click(get_object_or_404(PromotedPost, pk=pk))
    return Response(status=status.HTTP_204_NO_CONTENT)


class FollowView(generics.GenericAPIView):
    queryset = Profile.objects.all()

    def post(self, request, *args, **kwargs):
        target = self.get_object()
        social.follow(request.user.profile, target)
        target.refresh_from_db()
        return Response({'following': True, 'followers_count': target.followers_count})

    def delete(self, request, *args, **kwargs):
        target = self.get_object()
        social.unfollow(request.user.profile, target)
        target.refresh_from_db()
        return Response({'following': False, 'followers_count': target.followers_count})


class ReviewViewSet(viewsets.ModelViewSet):
    serializer_class = ReviewSerializer
    http_method_names = ['get', 'post', 'head', 'options']

    def get_queryset(self):
        provider_id = self.request.query_params.get('provider')
        qs = Review.objects.select_related('author')
        if provider_id:
            qs = qs.filter(provider_id=provider_id)
        return qs

    def perform_create(self, serializer):
        review = serializer.save()
        notifications.notify(review.provider, Notification.TYPE_REVIEW, actor=review.author, entity_id=review.pk)


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = NotificationSerializer
    filterset_fields = ['is_read', 'notification_type']

    def get_queryset(self):
        return Notification.objects.filter(recipient=self.request.user.profile).select_related('actor')

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        notification = self.get_object()
        notification.is_read = True
        notification.save(update_fields=['is_read', 'updated_at'])
        return Response(self.get_serializer(notification).data)
