"""Username validation and availability."""
from __future__ import annotations

import logging
import re
from typing import Optional

from django.db import DatabaseError

from .exceptions import ValidationError
from .models import Profile

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r'[A-Za-z0-9_]+')
MIN_LENGTH = 3
MAX_LENGTH = 30

AVAILABLE = 'available'
TAKEN = 'taken'
ERROR = 'error'


def is_valid_username(value: Optional[str]) -> bool:
    return bool(value) and MIN_LENGTH <= len(value) <= MAX_LENGTH and bool(USERNAME_RE.fullmatch(value))


def validate_username(value: Optional[str]) -> str:
    if not is_valid_username(value):
        raise ValidationError(
            f'Usernames need {MIN_LENGTH} to {MAX_LENGTH} characters: letters, numbers and underscores.'
        )
    return value


def check_availability(candidate: str, excluding_user_id=None) -> str:
    """Case-insensitive lookup; the excluded user's own name counts as available."""
    validate_username(candidate)
    try:
        qs = Profile.objects.filter(username__iexact=candidate)
        if excluding_user_id is not None:
            qs = qs.exclude(user_id=excluding_user_id)
        return TAKEN if qs.exists() else AVAILABLE
    except DatabaseError:
        logger.exception('Username availability lookup failed for %r', candidate)
        return ERROR
