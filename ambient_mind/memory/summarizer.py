from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List

from ..common import collapse_spaces, ensure_utc, to_iso, utc_now
from .topic_lifecycle import decay_topics, normalize_topic_name
from .vectors import encode_vector

logger = logging.getLogger("ambient_mind")

PERIODS: Dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}
MIN_MESSAGES_FOR_SUMMARY = 3
HOURLY_MIN_MESSAGES = 5
DAILY_MIN_MESSAGES = 20
MAX_MESSAGES_PER_SUMMARY = 200
MAX_TRANSCRIPT_CHARS = 3000
MAX_KEY_PARTICIPANTS = 5
MAX_TOPICS = 5


@dataclass(slots=True)
class SummaryRecord:
    summary_id: int
    channel_id: str
    guild_id: str
    period_type: str
    period_start: str
    period_end: str
    text: str
    topics: List[str] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    message_count: int = 0
    used_fallback: bool = False


@dataclass(slots=True)
class PassReport:
    period_type: str
    channels: int = 0
    summarized: int = 0
    topics_cooled: int = 0
    topics_archived: int = 0


def build_transcript(messages: List[Dict[str, object]], *, limit: int = MAX_TRANSCRIPT_CHARS) -> str:
    lines: List[str] = []
    used = 0
    for row in messages:
        line = f"{row['author_name']}: {collapse_spaces(str(row['content']))}"
        if used + len(line) + 1 > limit:
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


class ChannelSummarizer:
    """Periodic channel digests plus the topic lifecycle they feed."""

    def __init__(
        self,
        memory: Any,
        evaluator: Any | None,
        embedder: Any | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.memory = memory
        self.evaluator = evaluator
        self.embedder = embedder
        self._clock = clock

    def _embedder_available(self) -> bool:
        if self.embedder is None or not callable(getattr(self.embedder, "embed", None)):
            return False
        return bool(getattr(self.embedder, "available", True))

    async def _summarize(self, transcript: str, period_type: str) -> Any | None:
        summarize = getattr(self.evaluator, "summarize", None)
        if not callable(summarize):
            return None
        try:
            return await summarize(transcript, period_type)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Summary evaluator failed: %s", exc)
            return None

    async def generate_summary(
        self,
        channel_id: str,
        guild_id: str,
        period_type: str,
        start: datetime,
        end: datetime,
    ) -> SummaryRecord | None:
        if period_type not in PERIODS:
            raise ValueError(f"Unknown period type: {period_type}")
        period_start = to_iso(start)
        period_end = to_iso(end)
        messages = await self.memory.get_channel_messages_between(
            channel_id,
            period_start,
            period_end,
            MAX_MESSAGES_PER_SUMMARY,
        )
        if len(messages) < MIN_MESSAGES_FOR_SUMMARY:
            return None

        authors = Counter(str(row["author_name"]) for row in messages)
        participants = [name for name, _ in authors.most_common(MAX_KEY_PARTICIPANTS)]
        result = await self._summarize(build_transcript(messages), period_type)
        text = collapse_spaces(str(getattr(result, "summary", "") or "")) if result is not None else ""
        used_fallback = not text
        topics: List[str] = []
        if used_fallback:
            text = f"{len(messages)} messages from {len(authors)} participants"
        else:
            for raw in list(getattr(result, "topics", None) or []):
                name = normalize_topic_name(raw)
                if name and name not in topics:
                    topics.append(name)
            topics = topics[:MAX_TOPICS]

        summary_id = await self.memory.upsert_channel_summary(
            channel_id=channel_id,
            guild_id=guild_id,
            period_type=period_type,
            period_start=period_start,
            period_end=period_end,
            summary_text=text,
            key_topics=topics,
            key_participants=participants,
            message_count=len(messages),
        )
        seen_at = str(messages[-1]["created_at"])
        for topic in topics:
            await self.memory.upsert_topic(guild_id, topic, keywords=[topic], seen_at=seen_at)

        if not used_fallback:
            await self._embed_summary(summary_id, text)
        logger.info(
            "[summary] %s channel=%s messages=%s topics=%s fallback=%s",
            period_type,
            channel_id,
            len(messages),
            len(topics),
            used_fallback,
        )
        return SummaryRecord(
            summary_id=summary_id,
            channel_id=channel_id,
            guild_id=guild_id,
            period_type=period_type,
            period_start=period_start,
            period_end=period_end,
            text=text,
            topics=topics,
            participants=participants,
            message_count=len(messages),
            used_fallback=used_fallback,
        )

    async def _embed_summary(self, summary_id: int, text: str) -> None:
        if not self._embedder_available():
            return
        try:
            result = await self.embedder.embed([text])
            vectors = list(getattr(result, "vectors", None) or [])
            if not getattr(result, "success", False) or not vectors or not vectors[0]:
                return
            await self.memory.replace_summary_vector(
                summary_id,
                embedding=encode_vector(vectors[0]),
                source_text=text,
                model=str(getattr(result, "model", "") or ""),
                dimensions=len(vectors[0]),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Summary embedding failed for summary=%s: %s", summary_id, exc)

    async def _run_pass(self, period_type: str, min_messages: int, now: datetime | None) -> PassReport:
        end = ensure_utc(now or self._clock())
        start = end - PERIODS[period_type]
        report = PassReport(period_type=period_type)
        channels = await self.memory.get_active_channels(to_iso(start), min_messages)
        report.channels = len(channels)
        for channel in channels:
            try:
                record = await self.generate_summary(
                    str(channel["channel_id"]),
                    str(channel["guild_id"]),
                    period_type,
                    start,
                    end,
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Summary failed for channel=%s", channel["channel_id"])
                continue
            if record is not None:
                report.summarized += 1
        report.topics_cooled, report.topics_archived = await self.decay_topics(now=end)
        return report

    async def run_hourly_pass(self, now: datetime | None = None) -> PassReport:
        return await self._run_pass("hourly", HOURLY_MIN_MESSAGES, now)

    async def run_daily_pass(self, now: datetime | None = None) -> PassReport:
        return await self._run_pass("daily", DAILY_MIN_MESSAGES, now)

    async def trigger_summary(self, channel_id: str, guild_id: str, period_type: str = "hourly") -> SummaryRecord | None:
        if period_type not in PERIODS:
            raise ValueError(f"Unknown period type: {period_type}")
        end = self._clock()
        return await self.generate_summary(channel_id, guild_id, period_type, end - PERIODS[period_type], end)

    async def decay_topics(self, *, guild_id: str | None = None, now: datetime | None = None) -> tuple[int, int]:
        return await decay_topics(self.memory, now=ensure_utc(now or self._clock()), guild_id=guild_id)


class MaintenanceScheduler:
    """Hourly and daily summary passes plus the hourly queue purge."""

    def __init__(
        self,
        settings: Any,
        summarizer: ChannelSummarizer,
        queue_processor: Any | None = None,
    ) -> None:
        self.settings = settings
        self.summarizer = summarizer
        self.queue_processor = queue_processor
        self._tasks: List[asyncio.Task[None]] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.is_running:
            return
        self._tasks = []
        if bool(getattr(self.settings, "hourly_summary_enabled", True)):
            self._tasks.append(
                asyncio.create_task(
                    self._loop("hourly-summary", 3600.0, self.summarizer.run_hourly_pass),
                    name="hourly-summary",
                )
            )
        if bool(getattr(self.settings, "daily_summary_enabled", True)):
            self._tasks.append(
                asyncio.create_task(
                    self._loop("daily-summary", 86400.0, self.summarizer.run_daily_pass),
                    name="daily-summary",
                )
            )
        if self.queue_processor is not None:
            self._tasks.append(
                asyncio.create_task(
                    self._loop("queue-purge", 3600.0, self.queue_processor.cleanup_old_items),
                    name="queue-purge",
                )
            )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _loop(self, name: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = await job()
                logger.debug("[maintenance] %s finished: %s", name, result)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Maintenance job %s failed", name)
