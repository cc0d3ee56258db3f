from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from ..common import to_iso, utc_now
from .vectors import encode_vector

logger = logging.getLogger("ambient_mind")

SOURCE_TEXT_LIMIT = 500


@dataclass(slots=True)
class BatchReport:
    picked: int = 0
    embedded: int = 0
    retried: int = 0
    failed: int = 0
    skipped_reason: str = ""


class EmbeddingQueueProcessor:
    """Background batch worker. All progress lives in the queue table, so stop/start loses nothing."""

    def __init__(self, settings: Any, memory: Any, embedder: Any | None) -> None:
        self.settings = settings
        self.memory = memory
        self.embedder = embedder
        self._processing = False
        self._task: asyncio.Task[None] | None = None
        self._processed_total = 0
        self._failed_total = 0
        self._last_processed_at: str | None = None

    @property
    def batch_size(self) -> int:
        return max(1, int(getattr(self.settings, "embedding_batch_size", 10)))

    @property
    def max_retries(self) -> int:
        return max(1, int(getattr(self.settings, "embedding_max_retries", 3)))

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _embedder_available(self) -> bool:
        if self.embedder is None or not callable(getattr(self.embedder, "embed", None)):
            return False
        return bool(getattr(self.embedder, "available", True))

    async def process_batch(self) -> BatchReport:
        if self._processing:
            return BatchReport(skipped_reason="already_running")
        if not self._embedder_available():
            return BatchReport(skipped_reason="embedding_unavailable")

        self._processing = True
        try:
            return await self._process_batch()
        finally:
            self._processing = False

    async def _process_batch(self) -> BatchReport:
        items = await self.memory.get_pending_queue_items(self.batch_size)
        report = BatchReport(picked=len(items))
        if not items:
            return report

        texts = [str(item["content"]) for item in items]
        try:
            result = await self.embedder.embed(texts)
            success = bool(getattr(result, "success", False))
            error = str(getattr(result, "error", "") or "embedding failed")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            result = None
            success = False
            error = str(exc) or type(exc).__name__

        if not success or result is None:
            logger.warning("[embed.queue] batch of %s failed: %s", len(items), error[:200])
            for item in items:
                status = await self.memory.record_queue_failure(
                    int(item["id"]),
                    int(item["message_row_id"]),
                    error=error,
                    max_retries=self.max_retries,
                )
                if status == "failed":
                    report.failed += 1
                else:
                    report.retried += 1
            self._failed_total += report.failed
            return report

        vectors = list(getattr(result, "vectors", None) or [])
        model = str(getattr(result, "model", "") or "")
        for index, item in enumerate(items):
            try:
                if index >= len(vectors) or not vectors[index]:
                    raise ValueError("embedding missing for item")
                vector = vectors[index]
                await self.memory.complete_queue_item(
                    int(item["id"]),
                    int(item["message_row_id"]),
                    embedding=encode_vector(vector),
                    source_text=str(item["content"])[:SOURCE_TEXT_LIMIT],
                    model=model,
                    dimensions=len(vector),
                )
                report.embedded += 1
            except Exception as exc:
                report.failed += 1
                logger.warning("[embed.queue] storing vector for item=%s failed: %s", item["id"], exc)
                with contextlib.suppress(Exception):
                    await self.memory.fail_queue_item(
                        int(item["id"]),
                        int(item["message_row_id"]),
                        error=f"store: {exc}",
                    )

        self._processed_total += report.embedded
        self._failed_total += report.failed
        self._last_processed_at = to_iso(utc_now())
        logger.info(
            "[embed.queue] batch done picked=%s embedded=%s failed=%s",
            report.picked,
            report.embedded,
            report.failed,
        )
        return report

    async def process_now(self) -> BatchReport:
        return await self.process_batch()

    async def cleanup_old_items(self, older_than: timedelta | None = None) -> int:
        age = older_than or timedelta(hours=int(getattr(self.settings, "embedding_queue_retention_hours", 24)))
        cutoff = to_iso(utc_now() - age)
        try:
            removed = await self.memory.purge_queue_items(cutoff)
        except Exception:
            logger.exception("Embedding queue cleanup failed")
            return 0
        if removed:
            logger.info("[embed.queue] purged %s finished items", removed)
        return removed

    async def stats(self) -> Dict[str, object]:
        try:
            counts = await self.memory.get_queue_counts()
        except Exception as exc:
            logger.warning("Embedding queue stats unavailable: %s", exc)
            counts = {}
        return {
            "queue": counts,
            "processed": self._processed_total,
            "failed": self._failed_total,
            "last_processed_at": self._last_processed_at,
            "is_processing": self._processing,
            "is_running": self.is_running,
        }

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop(), name="embedding-queue")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_loop(self) -> None:
        await asyncio.sleep(float(getattr(self.settings, "embedding_initial_delay_seconds", 5.0)))
        interval = float(getattr(self.settings, "embedding_interval_seconds", 30.0))
        while True:
            try:
                await self.process_batch()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Embedding queue worker error")
            await asyncio.sleep(interval)
