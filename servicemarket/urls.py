from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    RegisterView,
    login_view,
    MeView,
    username_check_view,
    ServiceViewSet,
    PayoutAccountView,
    BookingViewSet,
    DisputeViewSet,
    PostViewSet,
    FeedView,
    promotion_click_view,
    FollowView,
    ReviewViewSet,
    NotificationViewSet,
    PromotionViewSet,
    MessageViewSet,
)

router = DefaultRouter()
router.register(r'services', ServiceViewSet, basename='service')
router.register(r'bookings', BookingViewSet, basename='booking')
router.register(r'disputes', DisputeViewSet, basename='dispute')
router.register(r'posts', PostViewSet, basename='post')
router.register(r'reviews', ReviewViewSet, basename='review')
router.register(r'notifications', NotificationViewSet, basename='notification')
router.register(r'promotions', PromotionViewSet, basename='promotion')
router.register(r'messages', MessageViewSet, basename='message')

urlpatterns = [
    path('auth/register/', RegisterView.as_view(), name='register'),
    path('auth/login/', login_view, name='login'),
    path('me/', MeView.as_view(), name='me'),
    path('me/payout-account/', PayoutAccountView.as_view(), name='payout-account'),
    path('usernames/check/', username_check_view, name='username-check'),
    path('feed/', FeedView.as_view(), name='feed'),
    path('promotions/<uuid:pk>/click/', promotion_click_view, name='promotion-click'),
    path('profiles/<uuid:pk>/follow/', FollowView.as_view(), name='profile-follow'),
    path('', include(router.urls)),
]
