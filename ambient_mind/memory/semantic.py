from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np

from ..common import collapse_spaces
from ..prompts.memory import render_memory_context
from .cache import TTLCache
from .vectors import as_vector, decode_vector, encode_vector, rank_by_similarity

logger = logging.getLogger("ambient_mind")

MEMORY_TYPES: tuple[str, ...] = ("fact", "preference", "event", "relationship", "topic", "emotion", "joke", "lore")
MEMORY_SOURCES: tuple[str, ...] = ("conversation", "auto_extraction", "tool_call", "admin")

_GLOBAL_SCOPE = "__global__"

# (pattern, memory type, importance); group 0 becomes the stored text.
_EXTRACTION_PATTERNS: tuple[tuple[re.Pattern[str], str, float], ...] = (
    (
        re.compile(r"\bi (?:really )?(?:love|like|enjoy|hate|prefer|adore|can't stand)\s+[^.!?\n]+", re.IGNORECASE),
        "preference",
        0.6,
    ),
    (
        re.compile(r"\b(?:i'm|i am)\s+(?:a|an|from|into|learning|working|studying)\b[^.!?\n]+", re.IGNORECASE),
        "fact",
        0.6,
    ),
    (
        re.compile(r"\bi (?:just|recently|finally)\s+[^.!?\n]+", re.IGNORECASE),
        "event",
        0.5,
    ),
    (
        re.compile(
            r"\bmy (?:cat|dog|pet|sister|brother|mom|dad|mother|father|wife|husband|partner|"
            r"girlfriend|boyfriend|kid|son|daughter|friend)\b[^.!?\n]+",
            re.IGNORECASE,
        ),
        "fact",
        0.7,
    ),
)

MIN_EXTRACTED_CHARS = 10
MAX_EXTRACTED_CHARS = 200


@dataclass(slots=True)
class MemoryHit:
    id: int
    user_id: str | None
    memory_type: str
    content: str
    importance: float
    similarity: float | None = None
    source: str = "conversation"
    access_count: int = 0
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class _CachedMemoryVector:
    row: Dict[str, object]
    vector: np.ndarray


def _hit_from_row(row: Dict[str, object], similarity: float | None = None) -> MemoryHit:
    return MemoryHit(
        id=int(row["id"]),
        user_id=row.get("user_id"),  # type: ignore[arg-type]
        memory_type=str(row["memory_type"]),
        content=str(row["content"]),
        importance=float(row["importance"]),
        similarity=similarity,
        source=str(row.get("source") or "conversation"),
        access_count=int(row.get("access_count") or 0),
        metadata=dict(row.get("metadata") or {}),
    )


def extract_memory_candidates(text: str, speaker: str | None = None) -> list[tuple[str, str, float]]:
    """Deterministic first-person statements worth keeping: (content, type, importance).

    With a `speaker` each statement is stored as `<speaker> said: <statement>` so the
    "I" and "my" stay attributable when the memory is shown in someone else's context.
    """
    name = collapse_spaces(speaker or "")
    cleaned = collapse_spaces(text)
    found: list[tuple[str, str, float]] = []
    seen: set[str] = set()
    for pattern, memory_type, importance in _EXTRACTION_PATTERNS:
        for match in pattern.finditer(cleaned):
            content = match.group(0).strip(" ,;:")
            if not MIN_EXTRACTED_CHARS <= len(content) <= MAX_EXTRACTED_CHARS:
                continue
            key = content.casefold()
            if key in seen:
                continue
            seen.add(key)
            if name:
                content = f"{name} said: {content}"
            found.append((content, memory_type, importance))
    return found


class SemanticMemory:
    def __init__(
        self,
        memory: Any,
        embedder: Any | None,
        *,
        enabled: bool = True,
        auto_extract: bool = True,
        default_threshold: float = 0.5,
        cache_ttl_seconds: float = 300.0,
        cache_max_vectors: int = 500,
    ) -> None:
        self.memory = memory
        self.embedder = embedder
        self.enabled = enabled
        self.auto_extract = auto_extract
        self.default_threshold = default_threshold
        self.cache_max_vectors = max(1, int(cache_max_vectors))
        self._cache: TTLCache[str, List[_CachedMemoryVector]] = TTLCache(cache_ttl_seconds, max_keys=64)

    def _embedder_available(self) -> bool:
        if self.embedder is None or not callable(getattr(self.embedder, "embed", None)):
            return False
        return bool(getattr(self.embedder, "available", True))

    async def _embed_one(self, text: str) -> tuple[np.ndarray, str] | None:
        if not self._embedder_available():
            return None
        try:
            result = await self.embedder.embed([text])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Memory embedding failed: %s", exc)
            return None
        vectors = list(getattr(result, "vectors", None) or [])
        if not getattr(result, "success", False) or not vectors or not vectors[0]:
            return None
        return as_vector(vectors[0]), str(getattr(result, "model", "") or "")

    async def store_memory(
        self,
        content: str,
        memory_type: str,
        *,
        user_id: str | None = None,
        importance: float = 0.5,
        source: str = "conversation",
        source_id: str | None = None,
        metadata: Dict[str, object] | None = None,
    ) -> int:
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unknown memory type: {memory_type}")
        if source not in MEMORY_SOURCES:
            raise ValueError(f"Unknown memory source: {source}")
        text = collapse_spaces(content)
        if not text:
            raise ValueError("Memory content cannot be empty")

        embedding_id: int | None = None
        embedded = await self._embed_one(text)
        if embedded is not None:
            vector, model = embedded
            embedding_id = await self.memory.insert_memory_embedding(
                encode_vector(vector),
                model=model,
                dimensions=int(vector.size),
            )
        return await self.memory.insert_semantic_memory(
            user_id=user_id,
            memory_type=memory_type,
            content=text,
            importance=importance,
            embedding_id=embedding_id,
            source=source,
            source_id=source_id,
            metadata=metadata,
        )

    async def _load_vectors(self, scope: str) -> List[_CachedMemoryVector]:
        user_id = None if scope == _GLOBAL_SCOPE else scope
        rows = await self.memory.get_memory_vectors(user_id, self.cache_max_vectors)
        loaded: List[_CachedMemoryVector] = []
        for row in rows:
            vector = decode_vector(row.pop("embedding", b""))
            if vector.size:
                loaded.append(_CachedMemoryVector(row=row, vector=vector))
        return loaded

    async def search(
        self,
        query: str,
        *,
        user_id: str | None = None,
        limit: int = 5,
        threshold: float | None = None,
    ) -> List[MemoryHit]:
        """Never raises; degrades to top-importance memories when vectors are unavailable."""
        if not self.enabled:
            return []
        try:
            hits = await self._semantic_search(query, user_id=user_id, limit=limit, threshold=threshold)
            if hits is None:
                hits = await self._fallback_search(user_id=user_id, limit=limit)
            if hits:
                await self.memory.touch_memories(hit.id for hit in hits)
            return hits
        except Exception:
            logger.exception("Memory search failed for user=%s", user_id)
            return []

    async def _semantic_search(
        self,
        query: str,
        *,
        user_id: str | None,
        limit: int,
        threshold: float | None,
    ) -> List[MemoryHit] | None:
        text = collapse_spaces(query)
        if not text:
            return None
        embedded = await self._embed_one(text)
        if embedded is None:
            return None
        query_vector, _ = embedded
        scope = user_id or _GLOBAL_SCOPE
        cached = await self._cache.get_or_refresh(scope, self._load_vectors)
        ranked = rank_by_similarity(
            query_vector,
            cached,
            lambda entry: entry.vector,
            top_k=limit,
            threshold=self.default_threshold if threshold is None else float(threshold),
        )
        return [_hit_from_row(entry.item.row, entry.similarity) for entry in ranked]

    async def _fallback_search(self, *, user_id: str | None, limit: int) -> List[MemoryHit]:
        rows = await self.memory.get_top_memories(user_id, limit)
        return [_hit_from_row(row) for row in rows]

    async def extract_from_text(
        self,
        user_id: str,
        text: str,
        *,
        source_id: str | None = None,
        speaker: str | None = None,
    ) -> List[int]:
        if not (self.enabled and self.auto_extract):
            return []
        stored: List[int] = []
        for content, memory_type, importance in extract_memory_candidates(text, speaker):
            try:
                memory_id = await self.store_memory(
                    content,
                    memory_type,
                    user_id=user_id,
                    importance=importance,
                    source="auto_extraction",
                    source_id=source_id,
                )
            except Exception as exc:
                logger.warning("Auto-extracted memory not stored for user=%s: %s", user_id, exc)
                continue
            stored.append(memory_id)
        return stored

    async def update_importance(self, memory_id: int, importance: float) -> bool:
        return await self.memory.update_memory_importance(memory_id, importance)

    async def delete_memory(self, memory_id: int) -> bool:
        return await self.memory.delete_semantic_memory(memory_id)

    async def build_memory_context(self, user_id: str, query: str, *, limit: int = 5) -> str:
        hits = await self.search(query, user_id=user_id, limit=limit)
        return render_memory_context(hits)

    async def log_interaction(
        self,
        *,
        user_id: str,
        user_name: str,
        channel_id: str,
        guild_id: str,
        user_message: str,
        bot_response: str,
        sentiment: float | None = None,
    ) -> None:
        try:
            await self.memory.log_user_interaction(
                user_id=user_id,
                user_name=user_name,
                channel_id=channel_id,
                guild_id=guild_id,
                user_message=user_message,
                bot_response=bot_response,
                sentiment=sentiment,
            )
        except Exception as exc:
            logger.warning("Interaction log write failed for user=%s: %s", user_id, exc)

    def clear_cache(self) -> None:
        self._cache.invalidate()

    def cache_size(self, user_id: str | None = None) -> int:
        cached = self._cache.get(user_id or _GLOBAL_SCOPE)
        return len(cached) if cached else 0