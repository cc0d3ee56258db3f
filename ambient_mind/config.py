from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Set

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_id_set(name: str, aliases: tuple[str, ...] = ()) -> Set[str]:
    # Snowflake ids are kept as strings, the same way they are stored.
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return set()
    result: Set[str] = set()
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value or not value.isdigit():
            continue
        result.add(value)
    return result


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


@dataclass(slots=True)
class Settings:
    sqlite_path: Path

    server_memory_enabled: bool
    server_memory_channel_ids: Set[str]
    server_memory_excluded_channel_ids: Set[str]
    importance_threshold: float

    embedding_batch_size: int
    embedding_interval_seconds: float
    embedding_initial_delay_seconds: float
    embedding_max_retries: int
    embedding_queue_retention_hours: int

    vector_cache_ttl_seconds: float
    vector_cache_max_entries: int
    ambient_lookback_minutes: int
    deep_recall_threshold: float

    memory_enabled: bool
    memory_auto_extract: bool
    memory_search_threshold: float

    hourly_summary_enabled: bool
    daily_summary_enabled: bool

    openrouter_api_key: str
    openrouter_base_url: str
    embedding_model: str
    llm_evaluator_enabled: bool
    llm_evaluator_model: str
    llm_evaluator_cache_ttl_seconds: float
    llm_evaluator_rate_limit_per_minute: int
    llm_timeout_seconds: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/ambient_mind.db")).expanduser(),
            server_memory_enabled=_env_bool("SERVER_MEMORY_ENABLED", True),
            server_memory_channel_ids=_env_id_set("SERVER_MEMORY_CHANNELS"),
            server_memory_excluded_channel_ids=_env_id_set("SERVER_MEMORY_EXCLUDED_CHANNELS"),
            importance_threshold=_env_float("IMPORTANCE_THRESHOLD", 0.3),
            embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", 10),
            embedding_interval_seconds=_env_float("EMBEDDING_INTERVAL_SECONDS", 30.0),
            embedding_initial_delay_seconds=_env_float("EMBEDDING_INITIAL_DELAY_SECONDS", 5.0),
            embedding_max_retries=_env_int("EMBEDDING_MAX_RETRIES", 3),
            embedding_queue_retention_hours=_env_int("EMBEDDING_QUEUE_RETENTION_HOURS", 24),
            vector_cache_ttl_seconds=_env_float("VECTOR_CACHE_TTL_SECONDS", 300.0),
            vector_cache_max_entries=_env_int("VECTOR_CACHE_MAX_ENTRIES", 500),
            ambient_lookback_minutes=_env_int("AMBIENT_LOOKBACK_MINUTES", 60),
            deep_recall_threshold=_env_float("DEEP_RECALL_THRESHOLD", 0.4),
            memory_enabled=_env_bool("MEMORY_ENABLED", True),
            memory_auto_extract=_env_bool("MEMORY_AUTO_EXTRACT", True),
            memory_search_threshold=_env_float("MEMORY_SEARCH_THRESHOLD", 0.5),
            hourly_summary_enabled=_env_bool("HOURLY_SUMMARY_ENABLED", True),
            daily_summary_enabled=_env_bool("DAILY_SUMMARY_ENABLED", True),
            openrouter_api_key=_env_str("OPENROUTER_API_KEY", ""),
            openrouter_base_url=_env_str("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            embedding_model=_env_str("EMBEDDING_MODEL", "openai/text-embedding-3-small"),
            llm_evaluator_enabled=_env_bool("LLM_EVALUATOR_ENABLED", True),
            llm_evaluator_model=_env_str("LLM_EVALUATOR_MODEL", "google/gemini-2.0-flash-001"),
            llm_evaluator_cache_ttl_seconds=_env_float("LLM_EVALUATOR_CACHE_TTL_SECONDS", 60.0),
            llm_evaluator_rate_limit_per_minute=_env_int("LLM_EVALUATOR_RATE_LIMIT_PER_MINUTE", 30),
            llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 45),
        )

    def validate(self) -> None:
        if not 0.0 <= self.importance_threshold <= 1.0:
            raise ValueError("IMPORTANCE_THRESHOLD must be between 0 and 1")
        if not 0.0 <= self.deep_recall_threshold <= 1.0:
            raise ValueError("DEEP_RECALL_THRESHOLD must be between 0 and 1")
        if not 0.0 <= self.memory_search_threshold <= 1.0:
            raise ValueError("MEMORY_SEARCH_THRESHOLD must be between 0 and 1")

        if self.embedding_batch_size < 1:
            raise ValueError("EMBEDDING_BATCH_SIZE must be >= 1")
        if self.embedding_batch_size > 100:
            raise ValueError("EMBEDDING_BATCH_SIZE must be <= 100")
        if self.embedding_interval_seconds < 1:
            raise ValueError("EMBEDDING_INTERVAL_SECONDS must be >= 1")
        if self.embedding_initial_delay_seconds < 0:
            raise ValueError("EMBEDDING_INITIAL_DELAY_SECONDS must be >= 0")
        if self.embedding_max_retries < 1:
            raise ValueError("EMBEDDING_MAX_RETRIES must be >= 1")
        if self.embedding_queue_retention_hours < 1:
            raise ValueError("EMBEDDING_QUEUE_RETENTION_HOURS must be >= 1")

        if self.vector_cache_ttl_seconds < 1:
            raise ValueError("VECTOR_CACHE_TTL_SECONDS must be >= 1")
        if self.vector_cache_max_entries < 10:
            raise ValueError("VECTOR_CACHE_MAX_ENTRIES must be >= 10")
        if self.ambient_lookback_minutes < 1:
            raise ValueError("AMBIENT_LOOKBACK_MINUTES must be >= 1")

        overlap = self.server_memory_channel_ids & self.server_memory_excluded_channel_ids
        if overlap:
            raise ValueError(
                "SERVER_MEMORY_CHANNELS and SERVER_MEMORY_EXCLUDED_CHANNELS overlap: "
                + ", ".join(sorted(overlap))
            )

        if self.openrouter_api_key == "put_your_openrouter_api_key_here":
            raise ValueError("OPENROUTER_API_KEY is still placeholder")
        if not self.embedding_model:
            raise ValueError("EMBEDDING_MODEL cannot be empty")
        if self.llm_evaluator_cache_ttl_seconds < 0:
            raise ValueError("LLM_EVALUATOR_CACHE_TTL_SECONDS must be >= 0")
        if self.llm_evaluator_rate_limit_per_minute < 1:
            raise ValueError("LLM_EVALUATOR_RATE_LIMIT_PER_MINUTE must be >= 1")
        if self.llm_timeout_seconds < 5:
            raise ValueError("LLM_TIMEOUT_SECONDS must be >= 5")
