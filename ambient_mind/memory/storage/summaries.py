from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import aiosqlite

from .utils import _dumps, _json_list, _now_iso, _sqlite_memory_connection


def _summary_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "id": int(row["id"]),
        "channel_id": str(row["channel_id"]),
        "guild_id": str(row["guild_id"]),
        "period_type": str(row["period_type"]),
        "period_start": str(row["period_start"]),
        "period_end": str(row["period_end"]),
        "summary_text": str(row["summary_text"]),
        "key_topics": [str(item) for item in _json_list(row["key_topics"])],
        "key_participants": [str(item) for item in _json_list(row["key_participants"])],
        "message_count": int(row["message_count"]),
        "updated_at": str(row["updated_at"]),
    }


class MemorySummariesMixin:
    async def upsert_channel_summary(
        self,
        *,
        channel_id: str,
        guild_id: str,
        period_type: str,
        period_start: str,
        period_end: str,
        summary_text: str,
        key_topics: Sequence[str],
        key_participants: Sequence[str],
        message_count: int,
    ) -> int:
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO channel_summaries (
                    channel_id, guild_id, period_type, period_start, period_end, summary_text,
                    key_topics, key_participants, message_count, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(channel_id, period_type, period_start) DO UPDATE SET
                    guild_id = excluded.guild_id,
                    period_end = excluded.period_end,
                    summary_text = excluded.summary_text,
                    key_topics = excluded.key_topics,
                    key_participants = excluded.key_participants,
                    message_count = excluded.message_count,
                    updated_at = excluded.updated_at
                """,
                (
                    channel_id,
                    guild_id,
                    period_type,
                    period_start,
                    period_end,
                    summary_text,
                    _dumps(list(key_topics)),
                    _dumps(list(key_participants)),
                    max(0, int(message_count)),
                    stamp,
                    stamp,
                ),
            )
            async with db.execute(
                """
                SELECT id FROM channel_summaries
                WHERE channel_id = ? AND period_type = ? AND period_start = ?
                """,
                (channel_id, period_type, period_start),
            ) as cursor:
                row = await cursor.fetchone()
            await db.commit()
        return int(row[0])

    async def get_channel_summary(
        self,
        channel_id: str,
        period_type: str,
        period_start: str,
    ) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, channel_id, guild_id, period_type, period_start, period_end, summary_text,
                       key_topics, key_participants, message_count, updated_at
                FROM channel_summaries
                WHERE channel_id = ? AND period_type = ? AND period_start = ?
                """,
                (channel_id, period_type, period_start),
            ) as cursor:
                row = await cursor.fetchone()
        return _summary_row(row) if row is not None else None

    async def get_recent_summaries(self, guild_id: str, since: str, limit: int) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, channel_id, guild_id, period_type, period_start, period_end, summary_text,
                       key_topics, key_participants, message_count, updated_at
                FROM channel_summaries
                WHERE guild_id = ? AND period_end > ?
                ORDER BY period_end DESC, id DESC
                LIMIT ?
                """,
                (guild_id, since, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_summary_row(row) for row in rows]

    async def count_summaries(self, guild_id: str | None = None) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            if guild_id is None:
                query, params = "SELECT COUNT(*) FROM channel_summaries", ()
            else:
                query, params = "SELECT COUNT(*) FROM channel_summaries WHERE guild_id = ?", (guild_id,)
            async with db.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
