"""Follow graph with counters kept in step with the edges."""
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import F

from . import notifications
from .exceptions import ValidationError
from .models import Follow, Notification, Profile

logger = logging.getLogger(__name__)


def follow(follower: Profile, following: Profile) -> bool:
    """Create the edge and bump both counters. Returns False if it already existed."""
    if follower.pk == following.pk:
        raise ValidationError('You cannot follow yourself.')
    with transaction.atomic():
        try:
            with transaction.atomic():
                Follow.objects.create(follower=follower, following=following)
        except IntegrityError:
            return False
        Profile.objects.filter(pk=follower.pk).update(following_count=F('following_count') + 1)
        Profile.objects.filter(pk=following.pk).update(followers_count=F('followers_count') + 1)
        notifications.notify(following, Notification.TYPE_FOLLOW, actor=follower, entity_id=follower.pk)
    return True


def unfollow(follower: Profile, following: Profile) -> bool:
    with transaction.atomic():
        deleted, _ = Follow.objects.filter(follower=follower, following=following).delete()
        if not deleted:
            return False
        Profile.objects.filter(pk=follower.pk, following_count__gt=0).update(
            following_count=F('following_count') - 1
        )
        Profile.objects.filter(pk=following.pk, followers_count__gt=0).update(
            followers_count=F('followers_count') - 1
        )
    return True


def resync_follow_counts() -> int:
    """Repair counters that drifted before they were maintained transactionally."""
    repaired = 0
    for profile in Profile.objects.all().iterator():
        if profile.resync_follow_counts():
            repaired += 1
            logger.info('Resynced follow counts for %s', profile.username)
    return repaired
