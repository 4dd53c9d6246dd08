"""Small shared utility helpers used across package modules."""

import uuid
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time as an aware datetime."""

    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``msg_3f2a9c...``."""

    return f"{prefix}_{uuid.uuid4().hex[:12]}"
