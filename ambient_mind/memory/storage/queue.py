from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _now_iso, _sqlite_memory_connection


class MemoryQueueMixin:
    async def _insert_queue_row(
        self, db: aiosqlite.Connection, message_row_id: int, priority: int, stamp: str
    ) -> bool:
        cursor = await db.execute(
            """
            INSERT OR IGNORE INTO embedding_queue (message_row_id, priority, status, created_at, updated_at)
            VALUES (?, ?, 'pending', ?, ?)
            """,
            (int(message_row_id), max(0, min(100, int(priority))), stamp, stamp),
        )
        return cursor.rowcount > 0

    async def get_pending_queue_items(self, limit: int) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT q.id, q.message_row_id, q.priority, q.retry_count, q.created_at,
                       m.message_id, m.content
                FROM embedding_queue q
                JOIN messages m ON m.id = q.message_row_id
                WHERE q.status = 'pending'
                ORDER BY q.priority DESC, q.created_at ASC, q.id ASC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "id": int(row["id"]),
                "message_row_id": int(row["message_row_id"]),
                "priority": int(row["priority"]),
                "retry_count": int(row["retry_count"]),
                "created_at": str(row["created_at"]),
                "message_id": str(row["message_id"]),
                "content": str(row["content"]),
            }
            for row in rows
        ]

    async def get_queue_item(self, item_id: int) -> Dict[str, object] | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, message_row_id, priority, retry_count, status, error_text, created_at, processed_at
                FROM embedding_queue
                WHERE id = ?
                """,
                (int(item_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "id": int(row["id"]),
            "message_row_id": int(row["message_row_id"]),
            "priority": int(row["priority"]),
            "retry_count": int(row["retry_count"]),
            "status": str(row["status"]),
            "error_text": str(row["error_text"]),
            "created_at": str(row["created_at"]),
            "processed_at": str(row["processed_at"]) if row["processed_at"] is not None else None,
        }

    async def complete_queue_item(
        self,
        item_id: int,
        message_row_id: int,
        *,
        embedding: bytes,
        source_text: str,
        model: str,
        dimensions: int,
    ) -> None:
        """Write the vector and flip queue item and message together, or not at all."""
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT OR IGNORE INTO vectors (
                    message_row_id, source_type, source_text, embedding, model, dimensions, created_at
                )
                VALUES (?, 'message', ?, ?, ?, ?, ?)
                """,
                (int(message_row_id), source_text, embedding, model, int(dimensions), stamp),
            )
            await db.execute(
                """
                UPDATE embedding_queue
                SET status = 'completed', error_text = '', updated_at = ?, processed_at = ?
                WHERE id = ?
                """,
                (stamp, stamp, int(item_id)),
            )
            await db.execute(
                "UPDATE messages SET embedding_status = 'embedded' WHERE id = ?",
                (int(message_row_id),),
            )
            await db.commit()

    async def record_queue_failure(
        self,
        item_id: int,
        message_row_id: int,
        *,
        error: str,
        max_retries: int,
    ) -> str:
        """Count one failed attempt; the item turns terminal once it reaches ``max_retries``."""
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                UPDATE embedding_queue
                SET retry_count = retry_count + 1,
                    error_text = ?,
                    updated_at = ?,
                    status = CASE WHEN retry_count + 1 >= ? THEN 'failed' ELSE 'pending' END,
                    processed_at = CASE WHEN retry_count + 1 >= ? THEN ? ELSE processed_at END
                WHERE id = ? AND status = 'pending'
                """,
                (error[:500], stamp, int(max_retries), int(max_retries), stamp, int(item_id)),
            )
            async with db.execute("SELECT status FROM embedding_queue WHERE id = ?", (int(item_id),)) as cursor:
                row = await cursor.fetchone()
            status = str(row[0]) if row else "failed"
            if status == "failed":
                await db.execute(
                    "UPDATE messages SET embedding_status = 'failed' WHERE id = ? AND embedding_status <> 'embedded'",
                    (int(message_row_id),),
                )
            await db.commit()
        return status

    async def fail_queue_item(self, item_id: int, message_row_id: int, *, error: str) -> None:
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                UPDATE embedding_queue
                SET status = 'failed', error_text = ?, updated_at = ?, processed_at = ?
                WHERE id = ?
                """,
                (error[:500], stamp, stamp, int(item_id)),
            )
            await db.execute(
                "UPDATE messages SET embedding_status = 'failed' WHERE id = ? AND embedding_status <> 'embedded'",
                (int(message_row_id),),
            )
            await db.commit()

    async def purge_queue_items(self, older_than: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                DELETE FROM embedding_queue
                WHERE status IN ('completed', 'failed')
                  AND COALESCE(processed_at, updated_at) < ?
                """,
                (older_than,),
            )
            await db.commit()
            return max(0, int(cursor.rowcount))

    async def get_queue_counts(self) -> Dict[str, int]:
        counts = {"pending": 0, "completed": 0, "failed": 0}
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT status, COUNT(*) FROM embedding_queue GROUP BY status"
            ) as cursor:
                rows = await cursor.fetchall()
        for status, count in rows:
            counts[str(status)] = int(count)
        return counts
