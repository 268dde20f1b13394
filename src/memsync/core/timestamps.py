"""
Timestamp and identifier helpers (stdlib-only).

Every wire timestamp is integer epoch milliseconds; these helpers keep
that unit in one place.
"""

import random
import string
import time
from datetime import UTC, datetime

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_client_id() -> str:
    """Process-unique connection id: ``client-<millis>-<9 random chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"client-{now_ms()}-{suffix}"
