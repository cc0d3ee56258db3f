from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from ..common import collapse_spaces, to_iso

TOPIC_COOLING_AFTER = timedelta(hours=24)
TOPIC_DORMANT_AFTER = timedelta(days=7)


def normalize_topic_name(value: str) -> str:
    return collapse_spaces(str(value or "")).casefold().strip(" .,;:!?\"'")[:60]


async def decay_topics(memory: Any, *, now: datetime, guild_id: str | None = None) -> tuple[int, int]:
    """Forward-only lifecycle step: active -> cooling -> dormant. Returns (cooled, archived)."""
    stamp = to_iso(now)
    cooled = await memory.cool_topics(to_iso(now - TOPIC_COOLING_AFTER), cooled_at=stamp, guild_id=guild_id)
    archived = await memory.archive_topics(to_iso(now - TOPIC_DORMANT_AFTER), guild_id=guild_id)
    return cooled, archived
