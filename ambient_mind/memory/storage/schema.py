from __future__ import annotations

import os
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection


class MemorySchemaMixin:
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def init(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            has_tables = await self._has_user_tables(db)

            if has_tables and version != self.SCHEMA_VERSION:
                if self._allow_destructive_reset_on_mismatch():
                    await self._reset_schema(db)
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                    await db.commit()
                    return
                raise RuntimeError(
                    "SQLite schema version mismatch detected. "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                    "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                )

            await self._create_schema(db)
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        # Children first so foreign keys never block the drop.
        tables = (
            "vectors",
            "embedding_queue",
            "semantic_memories",
            "memory_embeddings",
            "user_interactions",
            "channel_summaries",
            "active_topics",
            "channel_metadata",
            "trait_history",
            "mood_history",
            "relationships",
            "personality_state",
            "messages",
        )
        for table in tables:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL UNIQUE,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                author_name TEXT NOT NULL,
                content TEXT NOT NULL,
                content_length INTEGER NOT NULL DEFAULT 0,
                has_attachments INTEGER NOT NULL DEFAULT 0,
                reply_to_id TEXT,
                importance_score REAL NOT NULL DEFAULT 0,
                embedding_status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (embedding_status IN ('pending', 'embedded', 'skipped', 'failed')),
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS embedding_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_row_id INTEGER NOT NULL UNIQUE,
                priority INTEGER NOT NULL DEFAULT 50,
                retry_count INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'completed', 'failed')),
                error_text TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                processed_at TEXT,
                FOREIGN KEY(message_row_id) REFERENCES messages(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS channel_summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                period_type TEXT NOT NULL CHECK (period_type IN ('hourly', 'daily', 'weekly')),
                period_start TEXT NOT NULL,
                period_end TEXT NOT NULL,
                summary_text TEXT NOT NULL,
                key_topics TEXT NOT NULL DEFAULT '[]',
                key_participants TEXT NOT NULL DEFAULT '[]',
                message_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(channel_id, period_type, period_start)
            );

            CREATE TABLE IF NOT EXISTS vectors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_row_id INTEGER UNIQUE,
                summary_id INTEGER UNIQUE,
                source_type TEXT NOT NULL CHECK (source_type IN ('message', 'summary')),
                source_text TEXT NOT NULL,
                embedding BLOB NOT NULL,
                model TEXT NOT NULL DEFAULT '',
                dimensions INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                CHECK ((message_row_id IS NULL) <> (summary_id IS NULL)),
                FOREIGN KEY(message_row_id) REFERENCES messages(id) ON DELETE CASCADE,
                FOREIGN KEY(summary_id) REFERENCES channel_summaries(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS memory_embeddings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                embedding BLOB NOT NULL,
                model TEXT NOT NULL DEFAULT '',
                dimensions INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS semantic_memories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT,
                memory_type TEXT NOT NULL CHECK (
                    memory_type IN ('fact', 'preference', 'event', 'relationship', 'topic', 'emotion', 'joke', 'lore')
                ),
                content TEXT NOT NULL,
                importance REAL NOT NULL DEFAULT 0.5,
                embedding_id INTEGER,
                source TEXT NOT NULL DEFAULT 'conversation'
                    CHECK (source IN ('conversation', 'auto_extraction', 'tool_call', 'admin')),
                source_id TEXT,
                metadata TEXT NOT NULL DEFAULT '{}',
                access_count INTEGER NOT NULL DEFAULT 0,
                last_accessed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(embedding_id) REFERENCES memory_embeddings(id) ON DELETE SET NULL
            );

            CREATE TABLE IF NOT EXISTS user_interactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                user_name TEXT NOT NULL DEFAULT '',
                channel_id TEXT NOT NULL DEFAULT '',
                guild_id TEXT NOT NULL DEFAULT '',
                user_message TEXT NOT NULL,
                bot_response TEXT NOT NULL DEFAULT '',
                sentiment REAL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS active_topics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id TEXT NOT NULL,
                topic_name TEXT NOT NULL,
                keywords TEXT NOT NULL DEFAULT '[]',
                first_seen_at TEXT NOT NULL,
                last_seen_at TEXT NOT NULL,
                mention_count INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'cooling', 'dormant')),
                cooled_at TEXT,
                UNIQUE(guild_id, topic_name)
            );

            CREATE TABLE IF NOT EXISTS channel_metadata (
                channel_id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                channel_name TEXT NOT NULL DEFAULT '',
                last_message_at TEXT NOT NULL,
                total_messages INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS personality_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                traits TEXT NOT NULL DEFAULT '{}',
                current_mood TEXT NOT NULL DEFAULT 'neutral',
                mood_started_at TEXT NOT NULL,
                mood_triggers TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS relationships (
                user_id TEXT PRIMARY KEY,
                affection REAL NOT NULL DEFAULT 0.3 CHECK (affection BETWEEN 0 AND 1),
                trust REAL NOT NULL DEFAULT 0.3 CHECK (trust BETWEEN 0 AND 1),
                familiarity REAL NOT NULL DEFAULT 0.1 CHECK (familiarity BETWEEN 0 AND 1),
                rivalry REAL NOT NULL DEFAULT 0 CHECK (rivalry BETWEEN 0 AND 1),
                inside_jokes TEXT NOT NULL DEFAULT '[]',
                nickname TEXT,
                interaction_count INTEGER NOT NULL DEFAULT 0,
                notes TEXT NOT NULL DEFAULT '[]',
                last_interaction_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS trait_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trait_name TEXT NOT NULL,
                trait_value REAL NOT NULL,
                previous_value REAL NOT NULL,
                trigger_event TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS mood_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                mood_name TEXT NOT NULL,
                trigger_reason TEXT NOT NULL DEFAULT '',
                duration_minutes INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_guild_created
            ON messages(guild_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_messages_channel_created
            ON messages(channel_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_messages_embedding_status
            ON messages(embedding_status);
            CREATE INDEX IF NOT EXISTS idx_embedding_queue_pending
            ON embedding_queue(status, priority DESC, created_at ASC);
            CREATE INDEX IF NOT EXISTS idx_channel_summaries_guild_period
            ON channel_summaries(guild_id, period_end DESC);
            CREATE INDEX IF NOT EXISTS idx_semantic_memories_user
            ON semantic_memories(user_id, importance DESC, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_active_topics_guild_status
            ON active_topics(guild_id, status, last_seen_at DESC);
            CREATE INDEX IF NOT EXISTS idx_user_interactions_user
            ON user_interactions(user_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_trait_history_trait
            ON trait_history(trait_name, created_at DESC);
            """
        )
