"""Posts: tagged media content, owner-only edits and engagement."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import notifications
from .exceptions import AuthorizationError, ValidationError
from .models import Notification, Post, PostComment, PostLike, Profile

logger = logging.getLogger(__name__)

URL_PREFIXES = ('http://', 'https://', 'data:image/')


@dataclass(frozen=True)
class PostContent:
    type: str
    urls: list = field(default_factory=list)
    content: str = ''


def _is_url(value) -> bool:
    return isinstance(value, str) and value.strip().startswith(URL_PREFIXES)


def parse_legacy_image_url(raw: Optional[str], caption: str = '') -> PostContent:
    """Best-effort reading of the old free-form ``image_url`` column.

    It held a single URL, a JSON-encoded list of URLs, a data URL, or text.
    """
    value = (raw or '').strip()
    if not value:
        return PostContent(type=Post.CONTENT_TEXT, content=caption)
    if value.startswith('['):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            urls = [u.strip() for u in decoded if _is_url(u)]
            if urls:
                return PostContent(type=Post.CONTENT_IMAGE, urls=urls)
            return PostContent(type=Post.CONTENT_TEXT, content=caption)
    if _is_url(value):
        return PostContent(type=Post.CONTENT_IMAGE, urls=[value])
    return PostContent(type=Post.CONTENT_TEXT, content=caption or value)


def normalize_legacy_posts() -> int:
    migrated = 0
    for post in Post.objects.exclude(legacy_image_url='').iterator():
        content = parse_legacy_image_url(post.legacy_image_url, post.caption)
        post.content_type = content.type
        post.image_urls = content.urls
        if content.type == Post.CONTENT_TEXT and not post.caption:
            post.caption = content.content
        post.legacy_image_url = ''
        post.save(update_fields=['content_type', 'image_urls', 'caption', 'legacy_image_url', 'updated_at'])
        migrated += 1
    logger.info('Normalized media for %s legacy posts', migrated)
    return migrated


def create_post(author: Profile, caption: str = '', image_urls: Sequence[str] = ()) -> Post:
    urls = [u.strip() for u in image_urls if u and u.strip()]
    bad = [u for u in urls if not _is_url(u)]
    if bad:
        raise ValidationError('Images must be http(s) or data:image URLs.')
    if not urls and not (caption or '').strip():
        raise ValidationError('A post needs a caption or at least one image.')
    return Post.objects.create(
        author=author,
        caption=caption or '',
        content_type=Post.CONTENT_IMAGE if urls else Post.CONTENT_TEXT,
        image_urls=urls,
    )


def _require_owner(post: Post, actor: Profile) -> None:
    if actor is None or post.author_id != actor.pk:
        raise AuthorizationError('Only the author can change this post.')


def edit_caption(post: Post, actor: Profile, caption: Optional[str]) -> Post:
    """Replace the caption. ``None`` keeps the current one."""
    _require_owner(post, actor)
    if post.is_deleted:
        raise ValidationError('This post has been deleted.')
    if caption is None:
        return post
    post.caption = caption
    post.save(update_fields=['caption', 'updated_at'])
    return post


def soft_delete_post(post: Post, actor: Profile) -> Post:
    _require_owner(post, actor)
    if not post.is_deleted:
        post.is_deleted = True
        post.deleted_at = timezone.now()
        post.save(update_fields=['is_deleted', 'deleted_at', 'updated_at'])
    return post


def like_post(post: Post, user: Profile) -> bool:
    if post.is_deleted:
        raise ValidationError('This post has been deleted.')
    with transaction.atomic():
        try:
            with transaction.atomic():
                PostLike.objects.create(post=post, user=user)
        except IntegrityError:
            return False
        notifications.notify(post.author, Notification.TYPE_LIKE, actor=user, entity_id=post.pk)
    return True


def unlike_post(post: Post, user: Profile) -> bool:
    deleted, _ = PostLike.objects.filter(post=post, user=user).delete()
    return bool(deleted)


def add_comment(post: Post, user: Profile, text: str) -> PostComment:
    if post.is_deleted:
        raise ValidationError('This post has been deleted.')
    if not (text or '').strip():
        raise ValidationError('Comments cannot be empty.')
    with transaction.atomic():
        comment = PostComment.objects.create(post=post, user=user, text=text.strip())
        notifications.notify(post.author, Notification.TYPE_COMMENT, actor=user, entity_id=post.pk)
    return comment
