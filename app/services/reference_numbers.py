from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime
from typing import Awaitable, Callable

from app.services.reservation_lease import utcnow


log = logging.getLogger(__name__)

REFERENCE_PREFIX = "REF"
SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 4
FALLBACK_SUFFIX_LENGTH = 2
MAX_ATTEMPTS = 10


def _random_chars(n: int) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(n))


def generate_reference_number(now: datetime | None = None) -> str:
    # REF-YYYYMMDDHHMMSS-XXXX
    ts = (now or utcnow()).strftime("%Y%m%d%H%M%S")
    return f"{REFERENCE_PREFIX}-{ts}-{_random_chars(SUFFIX_LENGTH)}"


async def allocate_reference_number(
    exists: Callable[[str], Awaitable[bool]],
    *,
    now: Callable[[], datetime] = utcnow,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    """
    Best-effort unique reference number.

    Retries on collision, then appends extra entropy so the loop always
    terminates. Not safe against a concurrent insert of the same value: the
    unique constraint on listings.reference_number is the real guarantee.
    """
    candidate = generate_reference_number(now())
    attempts = 0
    while await exists(candidate):
        attempts += 1
        if attempts > max_attempts:
            candidate = f"{generate_reference_number(now())}-{_random_chars(FALLBACK_SUFFIX_LENGTH)}"
            log.warning("reference allocation: %d collisions, using fallback %s", attempts - 1, candidate)
            break
        candidate = generate_reference_number(now())
    return candidate
