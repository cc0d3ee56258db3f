from __future__ import annotations

from typing import Dict, List, Optional

import aiosqlite

from .utils import _clamp, _now_iso, _sqlite_memory_connection


_MESSAGE_COLUMNS = """
    id, message_id, channel_id, guild_id, author_id, author_name, content, content_length,
    has_attachments, reply_to_id, importance_score, embedding_status, created_at
"""


def _message_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "id": int(row["id"]),
        "message_id": str(row["message_id"]),
        "channel_id": str(row["channel_id"]),
        "guild_id": str(row["guild_id"]),
        "author_id": str(row["author_id"]),
        "author_name": str(row["author_name"]),
        "content": str(row["content"]),
        "content_length": int(row["content_length"]),
        "has_attachments": bool(row["has_attachments"]),
        "reply_to_id": str(row["reply_to_id"]) if row["reply_to_id"] is not None else None,
        "importance_score": float(row["importance_score"]),
        "embedding_status": str(row["embedding_status"]),
        "created_at": str(row["created_at"]),
    }


class MemoryMessagesMixin:
    async def insert_message(
        self,
        *,
        message_id: str,
        channel_id: str,
        guild_id: str,
        author_id: str,
        author_name: str,
        content: str,
        has_attachments: bool,
        reply_to_id: str | None,
        importance_score: float,
        embedding_status: str,
        created_at: str,
        queue_priority: int | None = None,
    ) -> int | None:
        """Insert-or-ignore keyed by the external id; returns the new row id or None on duplicates.

        With `queue_priority` the embedding queue item is written in the same transaction,
        so a message is never left pending without a queue row.
        """
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT OR IGNORE INTO messages (
                    message_id, channel_id, guild_id, author_id, author_name, content, content_length,
                    has_attachments, reply_to_id, importance_score, embedding_status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    channel_id,
                    guild_id,
                    author_id,
                    author_name,
                    content,
                    len(content),
                    1 if has_attachments else 0,
                    reply_to_id,
                    _clamp(float(importance_score), 0.0, 1.0),
                    embedding_status,
                    created_at,
                ),
            )
            if cursor.rowcount <= 0:
                return None
            row_id = int(cursor.lastrowid)
            if queue_priority is not None:
                try:
                    await self._insert_queue_row(db, row_id, queue_priority, created_at)
                except Exception:
                    await db.rollback()
                    raise
            await db.commit()
            return row_id

    async def get_message(self, message_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = ?",
                (message_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return _message_row(row) if row is not None else None

    async def count_messages(self, guild_id: str | None = None) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            if guild_id is None:
                query, params = "SELECT COUNT(*) FROM messages", ()
            else:
                query, params = "SELECT COUNT(*) FROM messages WHERE guild_id = ?", (guild_id,)
            async with db.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_recent_channel_messages(
        self,
        channel_id: str,
        since: str,
        limit: int,
    ) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE channel_id = ? AND created_at > ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (channel_id, since, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_message_row(row) for row in rows]

    async def get_recent_guild_messages(
        self,
        guild_id: str,
        since: str,
        limit: int,
        *,
        exclude_channel_id: str | None = None,
    ) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE guild_id = ? AND created_at > ? AND channel_id <> ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (guild_id, since, exclude_channel_id or "", max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_message_row(row) for row in rows]

    async def get_channel_messages_between(
        self,
        channel_id: str,
        start: str,
        end: str,
        limit: int = 200,
    ) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE channel_id = ? AND created_at >= ? AND created_at < ?
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (channel_id, start, end, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_message_row(row) for row in rows]

    async def get_active_channels(
        self,
        since: str,
        min_messages: int,
        *,
        guild_id: str | None = None,
    ) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT channel_id, guild_id, COUNT(*) AS message_count
                FROM messages
                WHERE created_at > ? AND (? IS NULL OR guild_id = ?)
                GROUP BY channel_id, guild_id
                HAVING COUNT(*) >= ?
                ORDER BY message_count DESC, channel_id ASC
                """,
                (since, guild_id, guild_id, max(1, int(min_messages))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "channel_id": str(row["channel_id"]),
                "guild_id": str(row["guild_id"]),
                "message_count": int(row["message_count"]),
            }
            for row in rows
        ]

    async def upsert_channel_metadata(
        self,
        channel_id: str,
        guild_id: str,
        channel_name: str,
        last_message_at: str | None = None,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO channel_metadata (channel_id, guild_id, channel_name, last_message_at, total_messages)
                VALUES (?, ?, ?, ?, 1)
                ON CONFLICT(channel_id) DO UPDATE SET
                    channel_name = CASE
                        WHEN excluded.channel_name <> '' THEN excluded.channel_name
                        ELSE channel_metadata.channel_name
                    END,
                    last_message_at = MAX(channel_metadata.last_message_at, excluded.last_message_at),
                    total_messages = channel_metadata.total_messages + 1
                """,
                (channel_id, guild_id, channel_name or "", last_message_at or _now_iso()),
            )
            await db.commit()

    async def get_channel_metadata(self, channel_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT channel_id, guild_id, channel_name, last_message_at, total_messages
                FROM channel_metadata
                WHERE channel_id = ?
                """,
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "channel_id": str(row["channel_id"]),
            "guild_id": str(row["guild_id"]),
            "channel_name": str(row["channel_name"]),
            "last_message_at": str(row["last_message_at"]),
            "total_messages": int(row["total_messages"]),
        }
