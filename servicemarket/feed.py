"""Loads feed inputs for a viewer and hands them to the ranker."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, TypeVar

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Count, F
from django.utils import timezone

from .exceptions import MarketplaceError
from .models import Follow, Post, PostComment, PostLike, Profile, PromotedPost, PromotionImpression
from .ranking import Candidate, Interaction, RankedPost, rank

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class FeedPage:
    items: list[RankedPost]
    page: int
    has_more: bool


def _degrade(loader: Callable[[], T], what: str, fallback: T) -> T:
    """Load an optional feed input; on failure rank without it."""
    try:
        with transaction.atomic():
            return loader()
    except (DatabaseError, MarketplaceError) as exc:
        logger.warning('Feed %s unavailable, ranking without it: %s', what, exc)
        return fallback


def candidate_author_ids(viewer: Profile) -> list:
    followed = list(Follow.objects.filter(follower=viewer).values_list('following_id', flat=True))
    return followed + [viewer.pk]


def fetch_batch(viewer: Profile, page: int, page_size: int) -> list[Candidate]:
    posts = (
        Post.objects.filter(author_id__in=candidate_author_ids(viewer), is_deleted=False)
        .select_related('author')
        .annotate(like_count=Count('likes', distinct=True), comment_count=Count('comments', distinct=True))
        .order_by('-created_at')[page * page_size:(page + 1) * page_size]
    )
    return [Candidate(post=p, likes=p.like_count, comments=p.comment_count) for p in posts]


def recent_interactions(viewer: Profile, now: datetime) -> list[Interaction]:
    since = now - timedelta(days=settings.FEED_INTERACTION_WINDOW_DAYS)
    likes = PostLike.objects.filter(user=viewer, created_at__gte=since).values_list(
        'post__author_id', 'post_id', 'created_at'
    )
    comments = PostComment.objects.filter(user=viewer, created_at__gte=since).values_list(
        'post__author_id', 'post_id', 'created_at'
    )
    return [Interaction(a, p, 'like', t) for a, p, t in likes] + [
        Interaction(a, p, 'comment', t) for a, p, t in comments
    ]


def active_promotions(post_ids: Iterable, now: datetime) -> list[PromotedPost]:
    return list(PromotedPost.objects.filter(post_id__in=list(post_ids), starts_at__lte=now, ends_at__gte=now))


def record_impressions(ranked: Iterable[RankedPost], session_key: str) -> int:
    """Count each promoted post at most once per viewing session."""
    recorded = 0
    seen = set()
    for item in ranked:
        promo = item.promotion
        if promo is None or promo.pk in seen:
            continue
        seen.add(promo.pk)
        _, created = PromotionImpression.objects.get_or_create(promoted_post=promo, session_key=session_key)
        if created:
            PromotedPost.objects.filter(pk=promo.pk).update(impressions=F('impressions') + 1)
            recorded += 1
    return recorded


def record_click(promoted_post: PromotedPost) -> None:
    PromotedPost.objects.filter(pk=promoted_post.pk).update(clicks=F('clicks') + 1)


def get_feed(
    viewer: Profile,
    page: int = 0,
    session_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FeedPage:
    now = now or timezone.now()
    page_size = settings.FEED_PAGE_SIZE
    candidates = fetch_batch(viewer, page, page_size)
    interactions = _degrade(lambda: recent_interactions(viewer, now), 'interactions', [])
    promotions = _degrade(lambda: active_promotions([c.post.id for c in candidates], now), 'promotions', [])

    ranked = rank(candidates, now, interactions=interactions, promotions=promotions)
    if session_key:
        _degrade(lambda: record_impressions(ranked, session_key), 'impressions', 0)
    return FeedPage(items=ranked, page=page, has_more=len(candidates) == page_size)
