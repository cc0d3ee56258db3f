from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _now_iso, _sqlite_memory_connection


class MemoryEmbeddingsMixin:
    async def get_embedded_records(self, guild_id: str, limit: int) -> List[Dict[str, object]]:
        """Most recent message and summary vectors of one guild, newest first."""
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT v.id AS vector_id, v.source_type, v.source_text, v.embedding,
                       m.message_id AS message_id, m.author_name AS author_name,
                       COALESCE(m.channel_id, s.channel_id) AS channel_id,
                       COALESCE(m.created_at, s.period_end) AS created_at,
                       s.id AS summary_id, s.period_type AS period_type
                FROM vectors v
                LEFT JOIN messages m ON m.id = v.message_row_id
                LEFT JOIN channel_summaries s ON s.id = v.summary_id
                WHERE COALESCE(m.guild_id, s.guild_id) = ?
                ORDER BY COALESCE(m.created_at, s.period_end) DESC, v.id DESC
                LIMIT ?
                """,
                (guild_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "vector_id": int(row["vector_id"]),
                "source_type": str(row["source_type"]),
                "source_text": str(row["source_text"]),
                "embedding": bytes(row["embedding"]),
                "message_id": str(row["message_id"]) if row["message_id"] is not None else None,
                "summary_id": int(row["summary_id"]) if row["summary_id"] is not None else None,
                "period_type": str(row["period_type"]) if row["period_type"] is not None else None,
                "author_name": str(row["author_name"]) if row["author_name"] is not None else "",
                "channel_id": str(row["channel_id"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]

    async def replace_summary_vector(
        self,
        summary_id: int,
        *,
        embedding: bytes,
        source_text: str,
        model: str,
        dimensions: int,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("DELETE FROM vectors WHERE summary_id = ?", (int(summary_id),))
            await db.execute(
                """
                INSERT INTO vectors (summary_id, source_type, source_text, embedding, model, dimensions, created_at)
                VALUES (?, 'summary', ?, ?, ?, ?, ?)
                """,
                (int(summary_id), source_text, embedding, model, int(dimensions), _now_iso()),
            )
            await db.commit()

    async def count_vectors(self, source_type: str | None = None) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            if source_type is None:
                query, params = "SELECT COUNT(*) FROM vectors", ()
            else:
                query, params = "SELECT COUNT(*) FROM vectors WHERE source_type = ?", (source_type,)
            async with db.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def has_message_vector(self, message_row_id: int) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM vectors WHERE message_row_id = ? LIMIT 1",
                (int(message_row_id),),
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None
