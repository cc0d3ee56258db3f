from __future__ import annotations

import contextlib
import re
from datetime import datetime, timezone


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` chars, marking the cut with an ellipsis."""
    text = collapse_spaces(text)
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3].rstrip() + "..."


def tokenize(text: str) -> list[str]:
    return [word for word in re.split(r"\s+", (text or "").strip().casefold()) if word]


def as_float(value: object, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return float(value.strip())
    return default


def as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    # Fixed width so that string order matches time order in SQL comparisons.
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_iso(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)


def format_time_ago(then: datetime | None, now: datetime) -> str:
    if then is None:
        return "a while ago"
    minutes = int((ensure_utc(now) - ensure_utc(then)).total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} min ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hr ago"
    return f"{hours // 24} days ago"
