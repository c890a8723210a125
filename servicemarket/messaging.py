"""Direct messages between two profiles."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from . import notifications
from .exceptions import AuthorizationError, ValidationError
from .models import Message, Notification, Profile

logger = logging.getLogger(__name__)

MAX_LENGTH = 2000


@dataclass
class Conversation:
    partner: Profile
    last_message: Message
    unread: int = 0


def _between(profile: Profile, other: Profile) -> Q:
    return Q(sender=profile, receiver=other) | Q(sender=other, receiver=profile)


def send_message(sender: Profile, receiver: Profile, content: str) -> Message:
    text = (content or '').strip()
    if not text:
        raise ValidationError('Messages cannot be empty.')
    if len(text) > MAX_LENGTH:
        raise ValidationError(f'Messages are limited to {MAX_LENGTH} characters.')
    if sender.pk == receiver.pk:
        raise ValidationError('You cannot message yourself.')
    with transaction.atomic():
        message = Message.objects.create(sender=sender, receiver=receiver, content=text)
        notifications.notify(receiver, Notification.TYPE_MESSAGE, actor=sender, entity_id=message.pk)
    return message


def conversation(profile: Profile, other: Profile, mark_read: bool = True) -> list[Message]:
    """Both directions of a thread, oldest first. Reading it marks the incoming side read."""
    if mark_read:
        mark_conversation_read(profile, other)
    return list(Message.objects.filter(_between(profile, other)).select_related('sender', 'receiver'))


def mark_conversation_read(profile: Profile, other: Profile) -> int:
    return Message.objects.filter(sender=other, receiver=profile, is_read=False).update(
        is_read=True, updated_at=timezone.now()
    )


def conversations(profile: Profile) -> list[Conversation]:
    """One entry per partner, most recent activity first."""
    summaries: dict = {}
    latest_first = (
        Message.objects.filter(Q(sender=profile) | Q(receiver=profile))
        .select_related('sender', 'receiver')
        .order_by('-created_at')
    )
    for message in latest_first.iterator():
        partner = message.receiver if message.sender_id == profile.pk else message.sender
        summary = summaries.get(partner.pk)
        if summary is None:
            summary = summaries[partner.pk] = Conversation(partner=partner, last_message=message)
        if message.receiver_id == profile.pk and not message.is_read:
            summary.unread += 1
    return list(summaries.values())


def unread_count(profile: Profile) -> int:
    return Message.objects.filter(receiver=profile, is_read=False).count()


def delete_message(message: Message, actor: Profile) -> Message:
    """Blank the text for both sides; the message stays in the thread as a placeholder."""
    if actor is None or message.sender_id != actor.pk:
        raise AuthorizationError('You can only delete your own messages.')
    if not message.is_deleted:
        message.content = Message.DELETED_TEXT
        message.is_deleted = True
        message.deleted_at = timezone.now()
        message.save(update_fields=['content', 'is_deleted', 'deleted_at', 'updated_at'])
        logger.info('Message %s deleted by its sender', message.pk)
    return message
