from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import aiosqlite

from .utils import _clamp, _dumps, _json_dict, _now_iso, _sqlite_memory_connection


_MEMORY_COLUMNS = """
    sm.id, sm.user_id, sm.memory_type, sm.content, sm.importance, sm.embedding_id, sm.source,
    sm.source_id, sm.metadata, sm.access_count, sm.last_accessed_at, sm.created_at
"""


def _memory_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "id": int(row["id"]),
        "user_id": str(row["user_id"]) if row["user_id"] is not None else None,
        "memory_type": str(row["memory_type"]),
        "content": str(row["content"]),
        "importance": float(row["importance"]),
        "embedding_id": int(row["embedding_id"]) if row["embedding_id"] is not None else None,
        "source": str(row["source"]),
        "source_id": str(row["source_id"]) if row["source_id"] is not None else None,
        "metadata": _json_dict(row["metadata"]),
        "access_count": int(row["access_count"]),
        "last_accessed_at": str(row["last_accessed_at"]) if row["last_accessed_at"] is not None else None,
        "created_at": str(row["created_at"]),
    }


def _scope_clause(user_id: str | None) -> tuple[str, tuple[object, ...]]:
    # A user sees their own memories plus global ones; no user means global only.
    if user_id is None:
        return "sm.user_id IS NULL", ()
    return "(sm.user_id IS NULL OR sm.user_id = ?)", (user_id,)


class MemorySemanticMixin:
    async def insert_memory_embedding(self, embedding: bytes, *, model: str, dimensions: int) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO memory_embeddings (embedding, model, dimensions, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (embedding, model, int(dimensions), _now_iso()),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def insert_semantic_memory(
        self,
        *,
        user_id: str | None,
        memory_type: str,
        content: str,
        importance: float,
        embedding_id: int | None,
        source: str,
        source_id: str | None = None,
        metadata: dict | None = None,
    ) -> int:
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO semantic_memories (
                    user_id, memory_type, content, importance, embedding_id, source, source_id,
                    metadata, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    memory_type,
                    content,
                    _clamp(float(importance), 0.0, 1.0),
                    embedding_id,
                    source,
                    source_id,
                    _dumps(metadata or {}),
                    stamp,
                    stamp,
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def get_semantic_memory(self, memory_id: int) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM semantic_memories sm WHERE sm.id = ?",
                (int(memory_id),),
            ) as cursor:
                row = await cursor.fetchone()
        return _memory_row(row) if row is not None else None

    async def get_memory_vectors(self, user_id: str | None, limit: int) -> List[Dict[str, object]]:
        where, params = _scope_clause(user_id)
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MEMORY_COLUMNS}, me.embedding
                FROM semantic_memories sm
                JOIN memory_embeddings me ON me.id = sm.embedding_id
                WHERE {where}
                ORDER BY sm.importance DESC, sm.created_at DESC, sm.id DESC
                LIMIT ?
                """,
                (*params, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        result: List[Dict[str, object]] = []
        for row in rows:
            item = _memory_row(row)
            item["embedding"] = bytes(row["embedding"])
            result.append(item)
        return result

    async def get_top_memories(self, user_id: str | None, limit: int) -> List[Dict[str, object]]:
        where, params = _scope_clause(user_id)
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MEMORY_COLUMNS}
                FROM semantic_memories sm
                WHERE {where}
                ORDER BY sm.importance DESC, sm.created_at DESC, sm.id DESC
                LIMIT ?
                """,
                (*params, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_memory_row(row) for row in rows]

    async def touch_memories(self, memory_ids: Iterable[int]) -> None:
        ids = [int(memory_id) for memory_id in memory_ids]
        if not ids:
            return
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.executemany(
                """
                UPDATE semantic_memories
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE id = ?
                """,
                [(stamp, memory_id) for memory_id in ids],
            )
            await db.commit()

    async def update_memory_importance(self, memory_id: int, importance: float) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE semantic_memories SET importance = ?, updated_at = ? WHERE id = ?",
                (_clamp(float(importance), 0.0, 1.0), _now_iso(), int(memory_id)),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_semantic_memory(self, memory_id: int) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT embedding_id FROM semantic_memories WHERE id = ?",
                (int(memory_id),),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return False
            await db.execute("DELETE FROM semantic_memories WHERE id = ?", (int(memory_id),))
            if row[0] is not None:
                await db.execute("DELETE FROM memory_embeddings WHERE id = ?", (int(row[0]),))
            await db.commit()
        return True

    async def log_user_interaction(
        self,
        *,
        user_id: str,
        user_name: str,
        channel_id: str,
        guild_id: str,
        user_message: str,
        bot_response: str,
        sentiment: float | None = None,
    ) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO user_interactions (
                    user_id, user_name, channel_id, guild_id, user_message, bot_response, sentiment, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    user_name,
                    channel_id,
                    guild_id,
                    user_message,
                    bot_response,
                    None if sentiment is None else _clamp(float(sentiment), -1.0, 1.0),
                    _now_iso(),
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def get_recent_interactions(self, user_id: str, limit: int = 10) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, user_id, user_name, channel_id, guild_id, user_message, bot_response, sentiment, created_at
                FROM user_interactions
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "id": int(row["id"]),
                "user_id": str(row["user_id"]),
                "user_name": str(row["user_name"]),
                "channel_id": str(row["channel_id"]),
                "guild_id": str(row["guild_id"]),
                "user_message": str(row["user_message"]),
                "bot_response": str(row["bot_response"]),
                "sentiment": float(row["sentiment"]) if row["sentiment"] is not None else None,
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]
