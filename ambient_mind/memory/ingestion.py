from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from ..common import ensure_utc, to_iso
from .scoring import (
    ChannelRecencyState,
    IncomingMessage,
    embedding_priority,
    score_importance,
    should_embed,
)

logger = logging.getLogger("ambient_mind")


@dataclass(slots=True)
class IngestResult:
    stored: bool
    importance_score: float = 0.0
    will_embed: bool = False
    reason: str = ""
    priority: int | None = None
    duplicate: bool = False


class MessageIngestor:
    def __init__(self, settings: Any, memory: Any) -> None:
        self.settings = settings
        self.memory = memory
        self._channel_state: Dict[str, ChannelRecencyState] = {}

    @property
    def enabled(self) -> bool:
        return bool(getattr(self.settings, "server_memory_enabled", True))

    @property
    def threshold(self) -> float:
        return float(getattr(self.settings, "importance_threshold", 0.3))

    def _skip_reason(self, message: IncomingMessage) -> str | None:
        if not self.enabled:
            return "disabled"
        if message.author_is_bot:
            return "bot"
        if not (message.content or "").strip():
            return "empty"
        if not message.guild_id:
            return "dm"
        excluded = getattr(self.settings, "server_memory_excluded_channel_ids", set()) or set()
        if message.channel_id in excluded:
            return "excluded_channel"
        allowed = getattr(self.settings, "server_memory_channel_ids", set()) or set()
        if allowed and message.channel_id not in allowed:
            return "not_in_allowlist"
        return None

    async def ingest(self, message: IncomingMessage | Any) -> IngestResult:
        """Store, score and maybe queue one message. Never raises."""
        try:
            if not isinstance(message, IncomingMessage):
                message = IncomingMessage.from_discord(message)
            reason = self._skip_reason(message)
            if reason is not None:
                return IngestResult(stored=False, reason=reason)

            message.created_at = ensure_utc(message.created_at)
            state = self._channel_state.get(message.channel_id)
            score = score_importance(message, state)
            latest = state.last_message_at if state is not None else None
            if latest is None or message.created_at > latest:
                self._channel_state[message.channel_id] = ChannelRecencyState(last_message_at=message.created_at)

            will_embed = should_embed(score, self.threshold)
            priority = embedding_priority(score) if will_embed else None
            created_at = to_iso(message.created_at)
            row_id = await self.memory.insert_message(
                message_id=message.message_id,
                channel_id=message.channel_id,
                guild_id=str(message.guild_id),
                author_id=message.author_id,
                author_name=message.author_name,
                content=message.content,
                has_attachments=message.attachment_count > 0,
                reply_to_id=message.reply_to_id,
                importance_score=score,
                embedding_status="pending" if will_embed else "skipped",
                created_at=created_at,
                queue_priority=priority,
            )
            if row_id is None:
                return IngestResult(
                    stored=False,
                    importance_score=score,
                    will_embed=False,
                    reason="duplicate",
                    duplicate=True,
                )

            await self._touch_channel(message, created_at)
            if score >= 0.5:
                logger.debug(
                    "[ingest] important message channel=%s author=%s score=%.2f",
                    message.channel_id,
                    message.author_name,
                    score,
                )
            return IngestResult(stored=True, importance_score=score, will_embed=will_embed, priority=priority)
        except Exception:
            logger.exception("Message ingestion failed for message_id=%s", getattr(message, "message_id", "?"))
            return IngestResult(stored=False, reason="error")

    async def _touch_channel(self, message: IncomingMessage, created_at: str) -> None:
        try:
            await self.memory.upsert_channel_metadata(
                message.channel_id,
                str(message.guild_id),
                message.channel_name,
                created_at,
            )
        except Exception as exc:
            logger.warning("Channel metadata update failed for channel=%s: %s", message.channel_id, exc)
