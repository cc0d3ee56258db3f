from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind import app as runtime_app  # noqa: E402
from ambient_mind.config import Settings  # noqa: E402
from ambient_mind.memory.scoring import IncomingMessage  # noqa: E402


def _settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "ambient.db"))
    monkeypatch.setenv("OPENROUTER_API_KEY", "")
    monkeypatch.delenv("SERVER_MEMORY_CHANNELS", raising=False)
    monkeypatch.delenv("SERVER_MEMORY_EXCLUDED_CHANNELS", raising=False)
    settings = Settings.from_env()
    settings.validate()
    return settings


def test_offline_runtime_round_trip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _settings(tmp_path, monkeypatch)
    message = IncomingMessage(
        message_id="m1",
        channel_id="c1",
        guild_id="g1",
        author_id="u1",
        author_name="Alice",
        content="Does anyone remember the pizza place we liked? I love that spot",
        created_at=datetime.now(timezone.utc),
        channel_name="general",
    )

    async def run() -> tuple[object, str, object, dict]:
        runtime = runtime_app.build_runtime(settings)
        await runtime.start()
        try:
            ingested = await runtime.on_message(message)
            context = await runtime.build_reply_context(message)
            result = await runtime.after_reply(message, "the one with the burnt crusts?")
            stats = await runtime.stats()
        finally:
            await runtime.close()
        return ingested, context, result, stats

    ingested, context, result, stats = asyncio.run(run())

    assert ingested.stored is True
    assert "PERSONALITY STATE" in context
    assert "RELATIONSHIP WITH THIS USER" in context
    assert result.relationship_source == "fallback"
    assert result.relationship.interaction_count == 1
    assert stats["evaluator"]["available"] is False
    assert stats["mood"] in {"neutral", "flustered", "mischievous"}
    assert stats["relationships"] == 1
    assert (tmp_path / "ambient.db").exists()


def test_instance_lock_rejects_live_owner_and_replaces_stale(tmp_path: Path) -> None:
    lock_path = tmp_path / "run" / "ambient_mind.pid"

    runtime_app._acquire_instance_lock(lock_path)
    assert lock_path.read_text(encoding="utf-8") == str(os.getpid())
    with pytest.raises(RuntimeError, match="already running"):
        runtime_app._acquire_instance_lock(lock_path)

    lock_path.write_text("999999999", encoding="utf-8")
    runtime_app._acquire_instance_lock(lock_path)
    assert lock_path.read_text(encoding="utf-8") == str(os.getpid())

    runtime_app._release_instance_lock(lock_path)
    assert not lock_path.exists()
    assert runtime_app._is_process_alive(0) is False
