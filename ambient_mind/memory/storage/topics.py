from __future__ import annotations

from typing import Dict, List, Sequence

import aiosqlite

from .utils import _dumps, _json_list, _now_iso, _sqlite_memory_connection


class MemoryTopicsMixin:
    async def upsert_topic(
        self,
        guild_id: str,
        topic_name: str,
        *,
        keywords: Sequence[str] = (),
        seen_at: str | None = None,
    ) -> None:
        """New activity always lands the topic back on 'active'."""
        stamp = seen_at or _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO active_topics (
                    guild_id, topic_name, keywords, first_seen_at, last_seen_at, mention_count, status
                )
                VALUES (?, ?, ?, ?, ?, 1, 'active')
                ON CONFLICT(guild_id, topic_name) DO UPDATE SET
                    last_seen_at = MAX(active_topics.last_seen_at, excluded.last_seen_at),
                    mention_count = active_topics.mention_count + 1,
                    keywords = CASE
                        WHEN excluded.keywords <> '[]' THEN excluded.keywords
                        ELSE active_topics.keywords
                    END,
                    status = 'active',
                    cooled_at = NULL
                """,
                (guild_id, topic_name, _dumps(list(keywords)), stamp, stamp),
            )
            await db.commit()

    async def cool_topics(self, cutoff: str, *, cooled_at: str, guild_id: str | None = None) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE active_topics
                SET status = 'cooling', cooled_at = ?
                WHERE status = 'active' AND last_seen_at < ? AND (? IS NULL OR guild_id = ?)
                """,
                (cooled_at, cutoff, guild_id, guild_id),
            )
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def archive_topics(self, cutoff: str, *, guild_id: str | None = None) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE active_topics
                SET status = 'dormant'
                WHERE status = 'cooling' AND cooled_at < ? AND (? IS NULL OR guild_id = ?)
                """,
                (cutoff, guild_id, guild_id),
            )
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def get_topics(
        self,
        guild_id: str,
        *,
        statuses: Sequence[str] = ("active",),
        limit: int = 5,
    ) -> List[Dict[str, object]]:
        wanted = [str(status) for status in statuses] or ["active"]
        placeholders = ", ".join("?" for _ in wanted)
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT id, guild_id, topic_name, keywords, first_seen_at, last_seen_at,
                       mention_count, status, cooled_at
                FROM active_topics
                WHERE guild_id = ? AND status IN ({placeholders})
                ORDER BY last_seen_at DESC, id DESC
                LIMIT ?
                """,
                (guild_id, *wanted, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "id": int(row["id"]),
                "guild_id": str(row["guild_id"]),
                "topic_name": str(row["topic_name"]),
                "keywords": [str(item) for item in _json_list(row["keywords"])],
                "first_seen_at": str(row["first_seen_at"]),
                "last_seen_at": str(row["last_seen_at"]),
                "mention_count": int(row["mention_count"]),
                "status": str(row["status"]),
                "cooled_at": str(row["cooled_at"]) if row["cooled_at"] is not None else None,
            }
            for row in rows
        ]
