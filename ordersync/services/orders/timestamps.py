"""
Toast timestamp helpers.

Toast emits timestamps like ``2024-10-10T10:05:00.000+0000`` (offset
without a colon). Parsing normalizes the offset first; formatting always
produces UTC with millisecond precision in the same shape.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def normalize_toast_timestamp(value: Any) -> Optional[str]:
    """Rewrite a trailing ``+HHMM`` offset as ``+HH:MM``."""
    if not isinstance(value, str) or not value:
        return None
    return _OFFSET_RE.sub(r"\1:\2", value.strip())


def parse_toast_timestamp(value: Any) -> Optional[int]:
    """Parse a Toast timestamp into epoch milliseconds, or None."""
    normalized = normalize_toast_timestamp(value)
    if not normalized:
        return None
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def to_toast_iso(value: datetime) -> str:
    """Format a datetime as ``yyyy-MM-ddTHH:mm:ss.SSS+0000`` (UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}+0000"


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def ms_to_toast_iso(ms: int) -> str:
    return to_toast_iso(ms_to_datetime(ms))


def format_business_date(value: datetime) -> str:
    """UTC ``yyyyMMdd`` for a datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%d")
