from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import List

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind.common import to_iso  # noqa: E402
from ambient_mind.memory.store import MemoryStore  # noqa: E402
from ambient_mind.memory.summarizer import ChannelSummarizer, MaintenanceScheduler, build_transcript  # noqa: E402
from ambient_mind.services.contracts import EmbeddingResult, SummaryResult  # noqa: E402


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeEvaluator:
    def __init__(self, result: SummaryResult | None = None, *, fail: bool = False) -> None:
        self.result = result
        self.fail = fail
        self.transcripts: List[str] = []

    async def summarize(self, conversation_text: str, period_type: str) -> SummaryResult | None:
        self.transcripts.append(conversation_text)
        if self.fail:
            raise RuntimeError("evaluator down")
        return self.result


class _FakeEmbedder:
    available = True

    def __init__(self) -> None:
        self.texts: List[str] = []

    async def embed(self, texts):  # type: ignore[no-untyped-def]
        batch = [texts] if isinstance(texts, str) else list(texts)
        self.texts.extend(batch)
        return EmbeddingResult(success=True, vectors=[[1.0, 0.0] for _ in batch], model="fake-embed")


def _seeded_store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "memory.db")

    async def seed() -> None:
        await store.init()
        rows = [
            ("c1", "Alice", 55, "anyone up for game night friday?"),
            ("c1", "Bob", 50, "yes, I'll bring pizza"),
            ("c1", "Alice", 40, "pineapple is banned"),
            ("c1", "Carol", 30, "bold of you"),
            ("c1", "Bob", 20, "we'll vote on it"),
            ("c1", "Alice", 10, "fine, 8pm at mine"),
            ("c2", "Dave", 15, "meme incoming"),
            ("c2", "Dave", 14, "another one"),
            ("c1", "Alice", 90, "outside the hourly window"),
        ]
        for index, (channel, author, minutes, content) in enumerate(rows):
            await store.insert_message(
                message_id=f"m{index}",
                channel_id=channel,
                guild_id="g1",
                author_id=author.lower(),
                author_name=author,
                content=content,
                has_attachments=False,
                reply_to_id=None,
                importance_score=0.2,
                embedding_status="skipped",
                created_at=to_iso(NOW - timedelta(minutes=minutes)),
            )

    asyncio.run(seed())
    return store


def _summarizer(store: MemoryStore, evaluator=None, embedder=None) -> ChannelSummarizer:  # type: ignore[no-untyped-def]
    return ChannelSummarizer(store, evaluator, embedder, clock=lambda: NOW)


def test_build_transcript_respects_char_budget() -> None:
    messages = [{"author_name": "Alice", "content": "x" * 40}, {"author_name": "Bob", "content": "y  y"}]

    assert build_transcript(messages) == "Alice: " + "x" * 40 + "\nBob: y y"
    assert build_transcript(messages, limit=50) == "Alice: " + "x" * 40


def test_summary_without_evaluator_uses_counting_fallback(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    embedder = _FakeEmbedder()

    record = asyncio.run(_summarizer(store, None, embedder).trigger_summary("c1", "g1"))

    assert record is not None
    assert record.used_fallback
    assert record.text == "6 messages from 3 participants"
    assert record.topics == []
    assert record.participants == ["Alice", "Bob", "Carol"]
    assert record.period_start == to_iso(NOW - timedelta(hours=1))
    assert embedder.texts == []
    assert asyncio.run(store.count_vectors("summary")) == 0


def test_evaluator_summary_records_topics_and_embeds(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    evaluator = _FakeEvaluator(
        SummaryResult(summary="Alice and Bob planned game night.", topics=["Game Night", "game night!", "Pizza"])
    )
    embedder = _FakeEmbedder()

    record = asyncio.run(_summarizer(store, evaluator, embedder).trigger_summary("c1", "g1"))

    assert record is not None
    assert not record.used_fallback
    assert record.topics == ["game night", "pizza"]
    assert evaluator.transcripts[0].splitlines()[0] == "Alice: anyone up for game night friday?"
    assert "outside the hourly window" not in evaluator.transcripts[0]
    assert embedder.texts == ["Alice and Bob planned game night."]
    assert asyncio.run(store.count_vectors("summary")) == 1

    topics = asyncio.run(store.get_topics("g1"))
    assert sorted(topic["topic_name"] for topic in topics) == ["game night", "pizza"]
    assert all(topic["last_seen_at"] == to_iso(NOW - timedelta(minutes=10)) for topic in topics)

    stored = asyncio.run(store.get_channel_summary("c1", "hourly", record.period_start))
    assert stored is not None
    assert stored["summary_text"] == "Alice and Bob planned game night."
    assert stored["key_participants"] == ["Alice", "Bob", "Carol"]


def test_failing_evaluator_still_produces_a_summary(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)

    record = asyncio.run(_summarizer(store, _FakeEvaluator(fail=True)).trigger_summary("c1", "g1"))

    assert record is not None
    assert record.used_fallback


def test_quiet_channels_and_unknown_periods(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    summarizer = _summarizer(store)

    assert asyncio.run(summarizer.trigger_summary("c2", "g1")) is None
    assert asyncio.run(summarizer.trigger_summary("c3", "g1")) is None
    with pytest.raises(ValueError):
        asyncio.run(summarizer.trigger_summary("c1", "g1", "monthly"))


def test_hourly_pass_summarizes_busy_channels_and_decays_topics(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    asyncio.run(store.upsert_topic("g1", "old drama", seen_at=to_iso(NOW - timedelta(hours=30))))
    summarizer = _summarizer(store, _FakeEvaluator(SummaryResult(summary="Game night planning.", topics=["game night"])))

    report = asyncio.run(summarizer.run_hourly_pass())
    again = asyncio.run(summarizer.run_hourly_pass(NOW))

    assert (report.channels, report.summarized, report.topics_cooled) == (1, 1, 1)
    assert again.summarized == 1
    assert asyncio.run(store.count_summaries("g1")) == 1
    active = asyncio.run(store.get_topics("g1"))
    assert [topic["topic_name"] for topic in active] == ["game night"]
    assert active[0]["mention_count"] == 2
    cooling = asyncio.run(store.get_topics("g1", statuses=("cooling",)))
    assert [topic["topic_name"] for topic in cooling] == ["old drama"]


def test_daily_pass_requires_more_activity(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)

    report = asyncio.run(_summarizer(store).run_daily_pass())

    assert report.channels == 0
    assert report.summarized == 0


def test_scheduler_starts_enabled_jobs_and_stops_cleanly(tmp_path: Path) -> None:
    store = _seeded_store(tmp_path)
    settings = SimpleNamespace(hourly_summary_enabled=True, daily_summary_enabled=False)

    class _Queue:
        async def cleanup_old_items(self) -> int:
            return 0

    scheduler = MaintenanceScheduler(settings, _summarizer(store), _Queue())

    async def run() -> tuple[list[str], bool, bool]:
        scheduler.start()
        scheduler.start()
        names = sorted(task.get_name() for task in scheduler._tasks)
        running = scheduler.is_running
        await scheduler.stop()
        return names, running, scheduler.is_running

    names, running, after = asyncio.run(run())

    assert names == ["hourly-summary", "queue-purge"]
    assert running is True
    assert after is False
