# companions/Domain/utils.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from Domain.constants import DEFAULT_PERSONALITY


def clamp(x: float, lo: float, hi: float) -> float:
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def utc_now() -> datetime:
    """Domain-safe helper; services read time through an IClock."""
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    """Stable ISO string; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s)


def personality_key(personality: Any) -> str:
    """
    Normalize a personality tag (enum member, plain string, None) to the lowercase
    string used as template key. Unknown values are returned as-is; lookups fall
    back to the default personality.
    """
    if personality is None:
        return DEFAULT_PERSONALITY.value
    value = getattr(personality, "value", personality)
    if not isinstance(value, str):
        return DEFAULT_PERSONALITY.value
    value = value.strip().lower()
    return value or DEFAULT_PERSONALITY.value


def safe_int(x: Any, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default
