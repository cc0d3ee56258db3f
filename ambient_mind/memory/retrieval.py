from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Sequence

import numpy as np

from ..common import collapse_spaces, format_time_ago, parse_iso, to_iso, truncate, utc_now
from ..prompts.memory import render_server_context
from .cache import TTLCache
from .topic_lifecycle import decay_topics
from .vectors import as_vector, decode_vector, rank_by_similarity

logger = logging.getLogger("ambient_mind")

SAME_CHANNEL_SNIPPET_CHARS = 150
OTHER_CHANNEL_SNIPPET_CHARS = 100
DEEP_SNIPPET_CHARS = 100
SUMMARY_SNIPPET_CHARS = 150
DEEP_QUERY_MIN_CHARS = 10


class RetrievalMode(str, Enum):
    AMBIENT = "ambient"
    DEEP = "deep"
    TOPIC_TRACK = "topic_track"


@dataclass(slots=True)
class AmbientItem:
    message_id: str
    channel_id: str
    channel_label: str
    author_id: str
    author_name: str
    content: str
    created_at: str
    time_ago: str
    same_channel: bool
    is_priority: bool = False


@dataclass(slots=True)
class DeepRecallHit:
    vector_id: int
    source_type: str
    channel_id: str
    author_name: str
    content: str
    similarity: float
    created_at: str
    time_ago: str
    message_id: str | None = None


@dataclass(slots=True)
class TopicView:
    name: str
    mention_count: int
    last_seen_at: str
    time_ago: str
    keywords: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SummaryView:
    channel_id: str
    channel_label: str
    period_type: str
    text: str
    topics: List[str]
    message_count: int
    period_end: str


@dataclass(slots=True)
class _CachedServerVector:
    record: Dict[str, object]
    vector: np.ndarray


class ServerMemoryRetriever:
    """Ambient, deep-recall and topic-track views over server-wide messages."""

    def __init__(
        self,
        settings: Any,
        memory: Any,
        embedder: Any | None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.memory = memory
        self.embedder = embedder
        self._clock = clock
        self.cache_max_vectors = max(1, int(getattr(settings, "vector_cache_max_entries", 500)))
        self._cache: TTLCache[str, List[_CachedServerVector]] = TTLCache(
            float(getattr(settings, "vector_cache_ttl_seconds", 300.0)),
            max_keys=32,
        )

    def _embedder_available(self) -> bool:
        if self.embedder is None or not callable(getattr(self.embedder, "embed", None)):
            return False
        return bool(getattr(self.embedder, "available", True))

    async def _channel_labels(self, channel_ids: Iterable[str]) -> Dict[str, str]:
        labels: Dict[str, str] = {}
        for channel_id in dict.fromkeys(channel_ids):
            name = ""
            try:
                meta = await self.memory.get_channel_metadata(channel_id)
                if meta:
                    name = str(meta.get("channel_name") or "")
            except Exception as exc:
                logger.debug("Channel label lookup failed for %s: %s", channel_id, exc)
            labels[channel_id] = name or channel_id
        return labels

    async def get_ambient_context(
        self,
        guild_id: str,
        channel_id: str,
        *,
        lookback_minutes: int | None = None,
        same_channel_limit: int = 5,
        other_channel_limit: int = 3,
        priority_user_ids: Sequence[str] = (),
    ) -> List[AmbientItem]:
        now = self._clock()
        minutes = int(lookback_minutes or getattr(self.settings, "ambient_lookback_minutes", 60))
        since = to_iso(now - timedelta(minutes=minutes))
        try:
            same = await self.memory.get_recent_channel_messages(channel_id, since, same_channel_limit)
            other = await self.memory.get_recent_guild_messages(
                guild_id,
                since,
                other_channel_limit,
                exclude_channel_id=channel_id,
            )
            labels = await self._channel_labels(str(row["channel_id"]) for row in [*same, *other])
        except Exception as exc:
            logger.warning("Ambient context unavailable for guild=%s: %s", guild_id, exc)
            return []

        priority = {str(user_id) for user_id in priority_user_ids}
        items: List[AmbientItem] = []
        for rows, same_channel, limit in ((same, True, SAME_CHANNEL_SNIPPET_CHARS), (other, False, OTHER_CHANNEL_SNIPPET_CHARS)):
            for row in rows:
                items.append(
                    AmbientItem(
                        message_id=str(row["message_id"]),
                        channel_id=str(row["channel_id"]),
                        channel_label=labels.get(str(row["channel_id"]), str(row["channel_id"])),
                        author_id=str(row["author_id"]),
                        author_name=str(row["author_name"]),
                        content=truncate(str(row["content"]), limit),
                        created_at=str(row["created_at"]),
                        time_ago=format_time_ago(parse_iso(row["created_at"]), now),
                        same_channel=same_channel,
                        is_priority=str(row["author_id"]) in priority,
                    )
                )
        # Stable: priority authors first, recency order kept within each group.
        items.sort(key=lambda item: not item.is_priority)
        return items

    async def _load_vectors(self, guild_id: str) -> List[_CachedServerVector]:
        records = await self.memory.get_embedded_records(guild_id, self.cache_max_vectors)
        loaded: List[_CachedServerVector] = []
        for record in records:
            vector = decode_vector(record.pop("embedding", b""))
            if vector.size:
                loaded.append(_CachedServerVector(record=record, vector=vector))
        return loaded

    async def search(
        self,
        query: str,
        guild_id: str,
        *,
        channel_id: str | None = None,
        limit: int = 5,
        threshold: float = 0.3,
    ) -> List[DeepRecallHit]:
        text = collapse_spaces(query)
        if not text or not self._embedder_available():
            return []
        try:
            result = await self.embedder.embed([text])
            vectors = list(getattr(result, "vectors", None) or [])
            if not getattr(result, "success", False) or not vectors or not vectors[0]:
                return []
            query_vector = as_vector(vectors[0])
            cached = await self._cache.get_or_refresh(guild_id, self._load_vectors)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Deep recall unavailable for guild=%s: %s", guild_id, exc)
            return []

        candidates = [
            entry for entry in cached if channel_id is None or entry.record.get("channel_id") == channel_id
        ]
        ranked = rank_by_similarity(
            query_vector,
            candidates,
            lambda entry: entry.vector,
            top_k=limit,
            threshold=threshold,
        )
        now = self._clock()
        return [
            DeepRecallHit(
                vector_id=int(entry.item.record["vector_id"]),
                source_type=str(entry.item.record["source_type"]),
                channel_id=str(entry.item.record["channel_id"]),
                author_name=str(entry.item.record.get("author_name") or ""),
                content=truncate(str(entry.item.record["source_text"]), DEEP_SNIPPET_CHARS),
                similarity=entry.similarity,
                created_at=str(entry.item.record["created_at"]),
                time_ago=format_time_ago(parse_iso(entry.item.record["created_at"]), now),
                message_id=entry.item.record.get("message_id"),  # type: ignore[arg-type]
            )
            for entry in ranked
        ]

    async def get_active_topics(self, guild_id: str, *, limit: int = 5) -> List[TopicView]:
        now = self._clock()
        try:
            await decay_topics(self.memory, now=now, guild_id=guild_id)
            rows = await self.memory.get_topics(guild_id, statuses=("active",), limit=limit)
        except Exception as exc:
            logger.warning("Topic tracking unavailable for guild=%s: %s", guild_id, exc)
            return []
        return [
            TopicView(
                name=str(row["topic_name"]),
                mention_count=int(row["mention_count"]),
                last_seen_at=str(row["last_seen_at"]),
                time_ago=format_time_ago(parse_iso(row["last_seen_at"]), now),
                keywords=list(row.get("keywords") or []),
            )
            for row in rows
        ]

    async def get_recent_summaries(
        self,
        guild_id: str,
        *,
        lookback_hours: int = 24,
        limit: int = 2,
    ) -> List[SummaryView]:
        since = to_iso(self._clock() - timedelta(hours=lookback_hours))
        try:
            rows = await self.memory.get_recent_summaries(guild_id, since, limit)
            labels = await self._channel_labels(str(row["channel_id"]) for row in rows)
        except Exception as exc:
            logger.warning("Channel summaries unavailable for guild=%s: %s", guild_id, exc)
            return []
        return [
            SummaryView(
                channel_id=str(row["channel_id"]),
                channel_label=labels.get(str(row["channel_id"]), str(row["channel_id"])),
                period_type=str(row["period_type"]),
                text=truncate(str(row["summary_text"]), SUMMARY_SNIPPET_CHARS),
                topics=list(row.get("key_topics") or []),
                message_count=int(row["message_count"]),
                period_end=str(row["period_end"]),
            )
            for row in rows
        ]

    async def retrieve(
        self,
        mode: RetrievalMode | str,
        guild_id: str,
        *,
        channel_id: str | None = None,
        query: str = "",
        limit: int = 5,
        threshold: float | None = None,
        priority_user_ids: Sequence[str] = (),
    ) -> list:
        selected = RetrievalMode(mode)
        if selected is RetrievalMode.AMBIENT:
            if channel_id is None:
                raise ValueError("Ambient retrieval needs a channel_id")
            return await self.get_ambient_context(guild_id, channel_id, priority_user_ids=priority_user_ids)
        if selected is RetrievalMode.DEEP:
            return await self.search(
                query,
                guild_id,
                channel_id=channel_id,
                limit=limit,
                threshold=0.3 if threshold is None else threshold,
            )
        return await self.get_active_topics(guild_id, limit=limit)

    async def build_context(
        self,
        guild_id: str,
        channel_id: str,
        query: str = "",
        *,
        priority_user_ids: Sequence[str] = (),
    ) -> str:
        ambient = await self.get_ambient_context(guild_id, channel_id, priority_user_ids=priority_user_ids)
        deep: List[DeepRecallHit] = []
        if len(collapse_spaces(query)) > DEEP_QUERY_MIN_CHARS:
            deep = await self.search(
                query,
                guild_id,
                limit=3,
                threshold=float(getattr(self.settings, "deep_recall_threshold", 0.4)),
            )
            # Ambient already shows these verbatim.
            shown = {item.message_id for item in ambient}
            deep = [hit for hit in deep if hit.message_id is None or hit.message_id not in shown]
        topics = await self.get_active_topics(guild_id, limit=3)
        summaries = await self.get_recent_summaries(guild_id, lookback_hours=24, limit=2)
        return render_server_context(
            ambient=ambient,
            deep=deep,
            topics=topics,
            summaries=summaries,
            ambient_snippet_chars=80,
            deep_snippet_chars=DEEP_SNIPPET_CHARS,
            summary_chars=SUMMARY_SNIPPET_CHARS,
        )

    def clear_cache(self) -> None:
        self._cache.invalidate()

    async def stats(self, guild_id: str) -> Dict[str, object]:
        try:
            messages = await self.memory.count_messages(guild_id)
            summaries = await self.memory.count_summaries(guild_id)
            topics = await self.memory.get_topics(guild_id, statuses=("active", "cooling"), limit=100)
        except Exception as exc:
            logger.warning("Server memory stats unavailable for guild=%s: %s", guild_id, exc)
            return {}
        cached = self._cache.get(guild_id)
        return {
            "messages": messages,
            "summaries": summaries,
            "tracked_topics": len(topics),
            "cached_vectors": len(cached) if cached else 0,
            "cache_age_seconds": self._cache.age(guild_id),
        }
