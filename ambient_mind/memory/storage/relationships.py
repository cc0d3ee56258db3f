from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import aiosqlite

from .utils import _clamp, _dumps, _json_list, _now_iso, _sqlite_memory_connection


_RELATIONSHIP_COLUMNS = """
    user_id, affection, trust, familiarity, rivalry, inside_jokes, nickname,
    interaction_count, notes, last_interaction_at, created_at, updated_at
"""


def _relationship_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "user_id": str(row["user_id"]),
        "affection": float(row["affection"]),
        "trust": float(row["trust"]),
        "familiarity": float(row["familiarity"]),
        "rivalry": float(row["rivalry"]),
        "inside_jokes": [str(item) for item in _json_list(row["inside_jokes"])],
        "nickname": str(row["nickname"]) if row["nickname"] is not None else None,
        "interaction_count": int(row["interaction_count"]),
        "notes": [item for item in _json_list(row["notes"]) if isinstance(item, dict)],
        "last_interaction_at": (
            str(row["last_interaction_at"]) if row["last_interaction_at"] is not None else None
        ),
        "created_at": str(row["created_at"]),
        "updated_at": str(row["updated_at"]),
    }


class MemoryRelationshipsMixin:
    async def get_relationship_row(self, user_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_RELATIONSHIP_COLUMNS} FROM relationships WHERE user_id = ?",
                (user_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return _relationship_row(row) if row is not None else None

    async def get_relationship_rows(self, user_ids: Iterable[str]) -> List[Dict[str, object]]:
        ids = [str(user_id) for user_id in user_ids if str(user_id)]
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_RELATIONSHIP_COLUMNS}
                FROM relationships
                WHERE user_id IN ({placeholders})
                ORDER BY familiarity DESC, user_id ASC
                """,
                tuple(ids),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_relationship_row(row) for row in rows]

    async def save_relationship(
        self,
        *,
        user_id: str,
        affection: float,
        trust: float,
        familiarity: float,
        rivalry: float,
        inside_jokes: list[str],
        nickname: str | None,
        interaction_count: int,
        notes: list[dict],
        last_interaction_at: str | None = None,
    ) -> None:
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO relationships (
                    user_id, affection, trust, familiarity, rivalry, inside_jokes, nickname,
                    interaction_count, notes, last_interaction_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    affection = excluded.affection,
                    trust = excluded.trust,
                    familiarity = excluded.familiarity,
                    rivalry = excluded.rivalry,
                    inside_jokes = excluded.inside_jokes,
                    nickname = excluded.nickname,
                    interaction_count = excluded.interaction_count,
                    notes = excluded.notes,
                    last_interaction_at = excluded.last_interaction_at,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    _clamp(float(affection), 0.0, 1.0),
                    _clamp(float(trust), 0.0, 1.0),
                    _clamp(float(familiarity), 0.0, 1.0),
                    _clamp(float(rivalry), 0.0, 1.0),
                    _dumps(list(inside_jokes)),
                    nickname,
                    max(0, int(interaction_count)),
                    _dumps(list(notes)),
                    last_interaction_at or stamp,
                    stamp,
                    stamp,
                ),
            )
            await db.commit()

    async def count_relationships(self) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM relationships") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
