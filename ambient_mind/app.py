from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from .common import to_iso
from .config import Settings
from .memory.embedding_queue import EmbeddingQueueProcessor
from .memory.ingestion import IngestResult, MessageIngestor
from .memory.retrieval import ServerMemoryRetriever
from .memory.scoring import IncomingMessage
from .memory.semantic import SemanticMemory
from .memory.store import MemoryStore
from .memory.summarizer import ChannelSummarizer, MaintenanceScheduler
from .persona.engine import InteractionResult, PersonalityEngine
from .services.evaluator import LLMEvaluator
from .services.openrouter_client import OpenRouterClient

logger = logging.getLogger("ambient_mind")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _acquire_instance_lock(lock_path: Path) -> None:
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if lock_path.exists():
        stale_pid = 0
        with contextlib.suppress(ValueError, OSError):
            stale_pid = int(lock_path.read_text(encoding="utf-8").strip() or "0")
        if stale_pid > 0 and _is_process_alive(stale_pid):
            raise RuntimeError(f"Ambient mind is already running (pid={stale_pid}) for {lock_path.parent}.")
        with contextlib.suppress(OSError):
            lock_path.unlink()

    lock_path.write_text(str(os.getpid()), encoding="utf-8")


def _release_instance_lock(lock_path: Path) -> None:
    with contextlib.suppress(OSError):
        if lock_path.exists():
            lock_path.unlink()


@dataclass(slots=True)
class AwarenessRuntime:
    settings: Settings
    memory: MemoryStore
    llm: OpenRouterClient
    evaluator: LLMEvaluator
    ingestor: MessageIngestor
    queue: EmbeddingQueueProcessor
    retrieval: ServerMemoryRetriever
    semantic: SemanticMemory
    personality: PersonalityEngine
    summarizer: ChannelSummarizer
    scheduler: MaintenanceScheduler

    async def start(self) -> None:
        await self.memory.init()
        await self.llm.start()
        await self.personality.initialize()
        if not self.llm.available:
            logger.warning("OPENROUTER_API_KEY is not set: embeddings and LLM evaluation run in fallback mode.")
        if self.settings.server_memory_enabled:
            self.queue.start()
        self.scheduler.start()
        logger.info(
            "Ambient mind started (db=%s, server_memory=%s, evaluator=%s)",
            self.settings.sqlite_path,
            self.settings.server_memory_enabled,
            self.evaluator.available,
        )

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.queue.stop()
        await self.llm.close()

    async def on_message(self, message: IncomingMessage | Any) -> IngestResult:
        return await self.ingestor.ingest(message)

    async def build_reply_context(self, message: IncomingMessage, query: str | None = None) -> str:
        """Prompt material for answering `message`; each block is dropped when empty."""
        text = query if query is not None else message.content
        priority = [message.author_id, *message.mentioned_user_ids]
        blocks = [await self.personality.build_prompt_context(message.author_id)]
        blocks.append(await self.personality.build_relationship_context(message.mentioned_user_ids))
        if self.settings.memory_enabled:
            blocks.append(await self.semantic.build_memory_context(message.author_id, text))
        if message.guild_id and self.settings.server_memory_enabled:
            blocks.append(
                await self.retrieval.build_context(
                    message.guild_id,
                    message.channel_id,
                    text,
                    priority_user_ids=priority,
                )
            )
        return "\n\n".join(block for block in blocks if block)

    async def after_reply(self, message: IncomingMessage, response: str) -> InteractionResult:
        result = await self.personality.process_interaction(message.author_id, message.content, response)
        if self.settings.memory_enabled:
            await self.semantic.log_interaction(
                user_id=message.author_id,
                user_name=message.author_name,
                channel_id=message.channel_id,
                guild_id=str(message.guild_id or ""),
                user_message=message.content,
                bot_response=response,
                sentiment=result.analysis.sentiment,
            )
            await self.semantic.extract_from_text(
                message.author_id,
                message.content,
                source_id=message.message_id,
                speaker=message.author_name,
            )
        return result

    async def stats(self) -> Dict[str, object]:
        state = await self.personality.get_state()
        return {
            "mood": state.mood_key,
            "mood_expires_at": to_iso(state.mood_expires_at),
            "queue": await self.queue.stats(),
            "evaluator": self.evaluator.stats(),
            "vectors": await self.memory.count_vectors(),
            "relationships": await self.memory.count_relationships(),
        }


def build_runtime(settings: Settings) -> AwarenessRuntime:
    memory = MemoryStore(settings.sqlite_path)
    llm = OpenRouterClient(
        settings.openrouter_api_key,
        chat_model=settings.llm_evaluator_model,
        embedding_model=settings.embedding_model,
        timeout_seconds=settings.llm_timeout_seconds,
        base_url=settings.openrouter_base_url,
    )
    evaluator = LLMEvaluator(
        llm,
        enabled=settings.llm_evaluator_enabled,
        cache_ttl_seconds=settings.llm_evaluator_cache_ttl_seconds,
        rate_limit_per_minute=settings.llm_evaluator_rate_limit_per_minute,
    )
    queue = EmbeddingQueueProcessor(settings, memory, llm)
    summarizer = ChannelSummarizer(memory, evaluator, llm)
    return AwarenessRuntime(
        settings=settings,
        memory=memory,
        llm=llm,
        evaluator=evaluator,
        ingestor=MessageIngestor(settings, memory),
        queue=queue,
        retrieval=ServerMemoryRetriever(settings, memory, llm),
        semantic=SemanticMemory(
            memory,
            llm,
            enabled=settings.memory_enabled,
            auto_extract=settings.memory_auto_extract,
            default_threshold=settings.memory_search_threshold,
            cache_ttl_seconds=settings.vector_cache_ttl_seconds,
            cache_max_vectors=settings.vector_cache_max_entries,
        ),
        personality=PersonalityEngine(memory, evaluator),
        summarizer=summarizer,
        scheduler=MaintenanceScheduler(settings, summarizer, queue),
    )


async def _run_worker(settings: Settings) -> None:
    runtime = build_runtime(settings)
    await runtime.start()
    try:
        await asyncio.Event().wait()
    finally:
        with contextlib.suppress(Exception):
            await asyncio.wait_for(runtime.close(), timeout=10.0)


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    settings.validate()
    lock_path = settings.sqlite_path.parent / "ambient_mind.pid"
    _acquire_instance_lock(lock_path)
    try:
        asyncio.run(_run_worker(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
    finally:
        _release_instance_lock(lock_path)


if __name__ == "__main__":
    main()
