"""Durable record-then-process queue for side effects that must eventually happen.

A message is written in the same transaction as the state change that needs it
and is processed later by ``process_pending`` (the ``process_outbox`` command).
Failed messages back off exponentially until ``OUTBOX_MAX_ATTEMPTS``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import OutboxMessage

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]

HANDLERS: dict[str, Handler] = {}


def register(kind: str) -> Callable[[Handler], Handler]:
    def decorator(func: Handler) -> Handler:
        HANDLERS[kind] = func
        return func

    return decorator


def enqueue(
    kind: str,
    payload: dict[str, Any],
    idempotency_key: str,
    available_at: Optional[datetime] = None,
) -> OutboxMessage:
    """Insert a message unless one already exists for the key.

    ``available_at`` delays the first attempt; by default it is due at once.
    """
    message, created = OutboxMessage.objects.get_or_create(
        idempotency_key=idempotency_key,
        defaults={'kind': kind, 'payload': payload, 'next_attempt_at': available_at or timezone.now()},
    )
    if created:
        logger.info('Queued %s (%s)', kind, idempotency_key)
    return message


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=settings.OUTBOX_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0)))


def process_message(message: OutboxMessage, now: Optional[datetime] = None) -> bool:
    """Run one message's handler. Returns True when it completed."""
    now = now or timezone.now()
    handler = HANDLERS.get(message.kind)
    try:
        if handler is None:
            raise LookupError(f'No handler registered for {message.kind}')
        with transaction.atomic():
            handler(message.payload)
            message.status = OutboxMessage.STATUS_DONE
            message.attempts += 1
            message.processed_at = now
            message.last_error = ''
            message.save(update_fields=['status', 'attempts', 'processed_at', 'last_error', 'updated_at'])
        logger.info('Processed %s (%s)', message.kind, message.idempotency_key)
        return True
    except Exception as exc:
        message.attempts += 1
        message.last_error = f'{type(exc).__name__}: {exc}'
        if message.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
            message.status = OutboxMessage.STATUS_FAILED
            logger.error('Giving up on %s (%s) after %s attempts: %s',
                         message.kind, message.idempotency_key, message.attempts, exc)
        else:
            message.next_attempt_at = now + retry_delay(message.attempts)
            logger.warning('Attempt %s of %s (%s) failed: %s',
                           message.attempts, message.kind, message.idempotency_key, exc)
        message.save(update_fields=['status', 'attempts', 'next_attempt_at', 'last_error', 'updated_at'])
        return False


def process_pending(limit: int = 100, now: Optional[datetime] = None) -> dict[str, int]:
    """Process due pending messages, oldest first."""
    now = now or timezone.now()
    due = list(
        OutboxMessage.objects.filter(status=OutboxMessage.STATUS_PENDING, next_attempt_at__lte=now)
        .order_by('next_attempt_at')[:limit]
    )
    stats = {'processed': 0, 'failed': 0}
    for message in due:
        if process_message(message, now=now):
            stats['processed'] += 1
        else:
            stats['failed'] += 1
    return stats
