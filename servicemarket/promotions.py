"""Authors paying to boost their own posts in followers' feeds."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .exceptions import AuthorizationError, StateConflictError, ValidationError
from .models import Post, PromotedPost, Profile

logger = logging.getLogger(__name__)

LEVEL_PRICES = {
    PromotedPost.LEVEL_BASIC: Decimal('5.00'),
    PromotedPost.LEVEL_PREMIUM: Decimal('15.00'),
    PromotedPost.LEVEL_FEATURED: Decimal('30.00'),
}
MIN_BUDGET = Decimal('5.00')
DEFAULT_DURATION = timedelta(days=7)


def promote_post(
    post: Post,
    actor: Profile,
    level: str,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    budget: Optional[Decimal] = None,
    target_audience: str = '',
) -> PromotedPost:
    """Schedule a promotion window for a post the actor wrote.

    The window defaults to a week from now and the budget to the level's list
    price. Windows of one post may not overlap.
    """
    if actor is None or post.author_id != actor.pk:
        raise AuthorizationError('Only the author can promote this post.')
    if post.is_deleted:
        raise ValidationError('This post has been deleted.')
    if level not in LEVEL_PRICES:
        raise ValidationError(f'Unknown promotion level: {level}')
    now = timezone.now()
    starts_at = starts_at or now
    ends_at = ends_at or starts_at + DEFAULT_DURATION
    if ends_at <= starts_at:
        raise ValidationError('A promotion must end after it starts.')
    if ends_at <= now:
        raise ValidationError('A promotion cannot end in the past.')
    if budget is None:
        budget = LEVEL_PRICES[level]
    elif budget < MIN_BUDGET:
        raise ValidationError(f'The budget must be at least {MIN_BUDGET}.')

    with transaction.atomic():
        # Lock the post so two requests cannot both pass the overlap check.
        Post.objects.select_for_update().filter(pk=post.pk).first()
        overlapping = PromotedPost.objects.filter(post=post, starts_at__lt=ends_at, ends_at__gt=starts_at)
        if overlapping.exists():
            raise StateConflictError('This post already has a promotion during that time.')
        promotion = PromotedPost.objects.create(
            post=post,
            owner=actor,
            promotion_level=level,
            starts_at=starts_at,
            ends_at=ends_at,
            budget=budget,
            target_audience=target_audience or '',
        )
    logger.info('Post %s promoted at %s until %s', post.pk, level, ends_at)
    return promotion


def end_promotion(promotion: PromotedPost, actor: Profile) -> PromotedPost:
    """Stop a promotion now. Its impression and click counts are kept."""
    if actor is None or promotion.owner_id != actor.pk:
        raise AuthorizationError('Only the owner can end this promotion.')
    now = timezone.now()
    if promotion.ends_at <= now:
        raise StateConflictError('This promotion has already ended.')
    promotion.ends_at = max(now, promotion.starts_at)
    promotion.save(update_fields=['ends_at', 'updated_at'])
    return promotion
