"""Notification emitter.

Notifications are a side channel: they are written after the surrounding
transaction commits and a failure to write one is logged, never raised.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import DatabaseError, transaction

from .models import Notification, Profile

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES = {
    Notification.TYPE_FOLLOW: '{actor} started following you',
    Notification.TYPE_LIKE: '{actor} liked your post',
    Notification.TYPE_COMMENT: '{actor} commented on your post',
    Notification.TYPE_MESSAGE: 'You received a message from {actor}',
    Notification.TYPE_SERVICE: 'Your service has a new interaction',
    Notification.TYPE_BOOKING: 'You have a new booking notification',
    Notification.TYPE_REVIEW: '{actor} left a review on your service',
    Notification.TYPE_MENTION: '{actor} mentioned you in a post',
}


def default_message(notification_type: str, actor: Optional[Profile]) -> str:
    template = DEFAULT_MESSAGES.get(notification_type, 'You have a new notification')
    return template.format(actor=actor.username if actor else 'Someone')


def emit(
    recipient: Profile,
    notification_type: str,
    actor: Optional[Profile] = None,
    entity_id=None,
    message: Optional[str] = None,
) -> Optional[Notification]:
    """Write a notification now. Users are never notified about their own actions."""
    if actor is not None and actor.pk == recipient.pk:
        return None
    try:
        return Notification.objects.create(
            recipient=recipient,
            actor=actor,
            notification_type=notification_type,
            entity_id=str(entity_id) if entity_id else '',
            message=message or default_message(notification_type, actor),
        )
    except DatabaseError:
        logger.exception('Could not store %s notification for %s', notification_type, recipient.pk)
        return None


def notify(
    recipient: Profile,
    notification_type: str,
    actor: Optional[Profile] = None,
    entity_id=None,
    message: Optional[str] = None,
) -> None:
    """Schedule a notification for when the current transaction commits."""
    transaction.on_commit(lambda: emit(recipient, notification_type, actor, entity_id, message))
