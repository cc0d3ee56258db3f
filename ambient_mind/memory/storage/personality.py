from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

import aiosqlite

from .utils import _dumps, _json_dict, _json_list, _now_iso, _sqlite_memory_connection


class MemoryPersonalityMixin:
    async def ensure_personality_state(self, traits: Mapping[str, float], *, mood: str, started_at: str) -> None:
        stamp = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT OR IGNORE INTO personality_state (
                    id, traits, current_mood, mood_started_at, mood_triggers, created_at, updated_at
                )
                VALUES (1, ?, ?, ?, '[]', ?, ?)
                """,
                (_dumps(dict(traits)), mood, started_at, stamp, stamp),
            )
            await db.commit()

    async def get_personality_state(self) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT traits, current_mood, mood_started_at, mood_triggers, updated_at
                FROM personality_state
                WHERE id = 1
                """
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "traits": {str(k): float(v) for k, v in _json_dict(row["traits"]).items()},
            "current_mood": str(row["current_mood"]),
            "mood_started_at": str(row["mood_started_at"]),
            "mood_triggers": [item for item in _json_list(row["mood_triggers"]) if isinstance(item, dict)],
            "updated_at": str(row["updated_at"]),
        }

    async def save_mood_transition(
        self,
        *,
        mood: str,
        started_at: str,
        triggers: Sequence[Mapping[str, object]],
        reason: str,
        duration_minutes: int,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                UPDATE personality_state
                SET current_mood = ?, mood_started_at = ?, mood_triggers = ?, updated_at = ?
                WHERE id = 1
                """,
                (mood, started_at, _dumps([dict(item) for item in triggers]), started_at),
            )
            await db.execute(
                """
                INSERT INTO mood_history (mood_name, trigger_reason, duration_minutes, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (mood, reason[:300], int(duration_minutes), started_at),
            )
            await db.commit()

    async def save_trait_change(
        self,
        *,
        traits: Mapping[str, float],
        trait_name: str,
        new_value: float,
        previous_value: float,
        trigger: str,
        changed_at: str | None = None,
    ) -> None:
        stamp = changed_at or _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                "UPDATE personality_state SET traits = ?, updated_at = ? WHERE id = 1",
                (_dumps(dict(traits)), stamp),
            )
            await db.execute(
                """
                INSERT INTO trait_history (trait_name, trait_value, previous_value, trigger_event, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (trait_name, float(new_value), float(previous_value), trigger[:300], stamp),
            )
            await db.commit()

    async def get_trait_history(self, trait_name: str | None = None, limit: int = 20) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, trait_name, trait_value, previous_value, trigger_event, created_at
                FROM trait_history
                WHERE (? IS NULL OR trait_name = ?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (trait_name, trait_name, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "id": int(row["id"]),
                "trait_name": str(row["trait_name"]),
                "trait_value": float(row["trait_value"]),
                "previous_value": float(row["previous_value"]),
                "trigger_event": str(row["trigger_event"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]

    async def get_mood_history(self, limit: int = 20) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, mood_name, trigger_reason, duration_minutes, created_at
                FROM mood_history
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "id": int(row["id"]),
                "mood_name": str(row["mood_name"]),
                "trigger_reason": str(row["trigger_reason"]),
                "duration_minutes": int(row["duration_minutes"]),
                "created_at": str(row["created_at"]),
            }
            for row in rows
        ]
