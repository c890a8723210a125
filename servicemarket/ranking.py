"""Feed scoring and ordering.

Pure functions over already-loaded posts, counts, interactions and
promotions; ``feed.py`` does the loading. Weights are placeholders tuned by
hand, the promotion boosts come from ``FEED_PROMOTION_BOOSTS``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from django.conf import settings

from .models import PromotedPost

INTERACTION_WEIGHTS = {'like': 10, 'comment': 15, 'view': 5}

WEIGHTS = {
    'recency': 0.4,
    'likes': 0.15,
    'comments': 0.15,
    'quality': 0.1,
    'interaction': 0.1,
    'profile': 0.1,
}


@dataclass(frozen=True)
class Interaction:
    author_id: Any
    post_id: Any
    kind: str
    timestamp: datetime


@dataclass
class Candidate:
    post: Any
    likes: int = 0
    comments: int = 0


@dataclass
class RankedPost:
    post: Any
    base_score: float
    promotion: Optional[PromotedPost] = None
    boost: float = 0.0

    @property
    def score(self) -> float:
        return self.base_score + self.boost

    @property
    def is_promoted(self) -> bool:
        return self.promotion is not None

    @property
    def promotion_level(self) -> Optional[str]:
        return self.promotion.promotion_level if self.promotion else None


def recency_score(created_at: datetime, now: datetime) -> float:
    age_hours = max((now - created_at).total_seconds() / 3600, 0)
    return max(0.0, 100 - math.log(age_hours + 1) * 10)


def quality_score(post) -> float:
    has_image = 20 if getattr(post, 'image_urls', None) else 0
    caption = getattr(post, 'caption', '') or ''
    return has_image + min(15, len(caption) / 20)


def interaction_score(author_id, interactions: Iterable[Interaction]) -> float:
    """Personal relevance: how much the viewer has engaged with this author recently."""
    score = sum(INTERACTION_WEIGHTS.get(i.kind, 0) for i in interactions if i.author_id == author_id)
    return min(50, score)


def profile_score(profile) -> float:
    if profile is None:
        return 0
    score = 0.0
    if getattr(profile, 'user_role', None) == 'business':
        score += 5
    if getattr(profile, 'kyc_verified', False):
        score += 10
    rating = float(getattr(profile, 'reviews_rating', 0) or 0)
    if rating > 4:
        score += min(15, rating * 3)
    followers = getattr(profile, 'followers_count', 0) or 0
    if followers:
        score += min(15, math.log(followers + 1) * 2)
    return min(40, score)


def base_score(
    post,
    likes: int,
    comments: int,
    interactions: Sequence[Interaction],
    now: datetime,
) -> float:
    parts = {
        'recency': recency_score(post.created_at, now),
        'likes': min(50, max(likes, 0) * 2),
        'comments': min(50, max(comments, 0) * 3),
        'quality': quality_score(post),
        'interaction': interaction_score(post.author_id, interactions),
        'profile': profile_score(getattr(post, 'author', None)),
    }
    total = sum(WEIGHTS[name] * value for name, value in parts.items())
    return round(max(total, 0.0), 2)


def promotion_boost(level: Optional[str]) -> float:
    if level is None:
        return 0
    return settings.FEED_PROMOTION_BOOSTS.get(level, 0)


def select_active_promotions(promotions: Iterable[PromotedPost], now: datetime) -> dict:
    """One promotion per post: the highest tier active now, then the latest start."""
    chosen: dict = {}
    for promo in promotions:
        if not promo.is_active_at(now):
            continue
        current = chosen.get(promo.post_id)
        key = (PromotedPost.TIER_RANK.get(promo.promotion_level, 0), promo.starts_at)
        if current is None or key > (PromotedPost.TIER_RANK.get(current.promotion_level, 0), current.starts_at):
            chosen[promo.post_id] = promo
    return chosen


def sort_ranked(ranked: Iterable[RankedPost]) -> list[RankedPost]:
    """Promoted posts first by tier then base score, the rest by base score."""

    def key(item: RankedPost):
        tier = PromotedPost.TIER_RANK.get(item.promotion_level, 0) if item.is_promoted else 0
        return (item.is_promoted, tier, item.base_score)

    return sorted(ranked, key=key, reverse=True)


def rank(
    candidates: Iterable[Candidate],
    now: datetime,
    interactions: Sequence[Interaction] = (),
    promotions: Iterable[PromotedPost] = (),
) -> list[RankedPost]:
    active = select_active_promotions(promotions, now)
    ranked = []
    for candidate in candidates:
        post = candidate.post
        promo = active.get(post.id)
        ranked.append(
            RankedPost(
                post=post,
                base_score=base_score(post, candidate.likes, candidate.comments, interactions, now),
                promotion=promo,
                boost=promotion_boost(promo.promotion_level if promo else None),
            )
        )
    return sort_ranked(ranked)
