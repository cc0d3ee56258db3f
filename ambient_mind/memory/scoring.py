from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..common import ensure_utc, tokenize, utc_now


TOPIC_KEYWORDS: tuple[str, ...] = (
    "project",
    "idea",
    "plan",
    "decision",
    "announce",
    "update",
    "problem",
    "solution",
    "help",
    "question",
    "opinion",
    "think",
    "remember",
    "important",
    "meeting",
    "event",
    "date",
    "deadline",
    "agree",
    "disagree",
    "proposal",
    "suggest",
    "recommend",
    "vote",
    "finally",
    "actually",
    "honestly",
    "seriously",
    "literally",
)

QUESTION_PATTERN = re.compile(
    r"\b(what|why|how|when|where|who|which|would|could|should|can|is there|are there|"
    r"do you|does anyone|has anyone|will|shall)\b|\?\s*$",
    re.IGNORECASE,
)
SHOUTING_PATTERN = re.compile(r"!{2,}|\b[A-Z]{3,}\b")
STRONG_WORD_PATTERN = re.compile(
    r"\b(love|hate|amazing|terrible|excited|angry|sad|happy|awesome|awful|incredible|horrible|best|worst)\b",
    re.IGNORECASE,
)

RESTART_LONG_GAP_SECONDS = 30 * 60
RESTART_SHORT_GAP_SECONDS = 10 * 60


@dataclass(slots=True)
class IncomingMessage:
    message_id: str
    channel_id: str
    guild_id: str | None
    author_id: str
    author_name: str
    content: str
    created_at: datetime
    author_is_bot: bool = False
    attachment_count: int = 0
    reply_to_id: str | None = None
    user_mentions: int = 0
    role_mentions: int = 0
    channel_mentions: int = 0
    mentioned_user_ids: tuple[str, ...] = ()
    channel_name: str = ""

    @property
    def mention_count(self) -> int:
        return max(0, self.user_mentions) + max(0, self.role_mentions) + max(0, self.channel_mentions)

    @classmethod
    def from_discord(cls, message: Any) -> "IncomingMessage":
        """Adapt a discord.py-style message object without importing the library."""
        guild = getattr(message, "guild", None)
        channel = getattr(message, "channel", None)
        author = getattr(message, "author", None)
        reference = getattr(message, "reference", None)
        mentions = list(getattr(message, "mentions", None) or [])
        created_at = getattr(message, "created_at", None)
        return cls(
            message_id=str(getattr(message, "id", "")),
            channel_id=str(getattr(channel, "id", "")),
            guild_id=str(guild.id) if guild is not None else None,
            author_id=str(getattr(author, "id", "")),
            author_name=str(
                getattr(author, "display_name", None) or getattr(author, "name", None) or "unknown"
            ),
            content=str(getattr(message, "content", "") or ""),
            created_at=ensure_utc(created_at) if isinstance(created_at, datetime) else utc_now(),
            author_is_bot=bool(getattr(author, "bot", False)),
            attachment_count=len(getattr(message, "attachments", None) or []),
            reply_to_id=(
                str(reference.message_id)
                if reference is not None and getattr(reference, "message_id", None) is not None
                else None
            ),
            user_mentions=len(mentions),
            role_mentions=len(getattr(message, "role_mentions", None) or []),
            channel_mentions=len(getattr(message, "channel_mentions", None) or []),
            mentioned_user_ids=tuple(str(getattr(user, "id", "")) for user in mentions),
            channel_name=str(getattr(channel, "name", "") or ""),
        )


@dataclass(slots=True)
class ChannelRecencyState:
    last_message_at: datetime | None = None


def _length_weight(word_count: int) -> float:
    if 10 <= word_count <= 50:
        return 0.15
    if 5 <= word_count < 10:
        return 0.08
    if 3 <= word_count < 5:
        return 0.03
    return 0.0


def _restart_weight(message: IncomingMessage, state: ChannelRecencyState | None) -> float:
    # An unseen channel counts as a conversation restart.
    if state is None or state.last_message_at is None:
        return 0.10
    gap = (ensure_utc(message.created_at) - ensure_utc(state.last_message_at)).total_seconds()
    if gap > RESTART_LONG_GAP_SECONDS:
        return 0.10
    if gap > RESTART_SHORT_GAP_SECONDS:
        return 0.05
    return 0.0


def score_importance(message: IncomingMessage, state: ChannelRecencyState | None = None) -> float:
    """Heuristic worth-remembering score in [0, 1]. Pure: reads nothing but its arguments."""
    content = (message.content or "").strip()
    words = tokenize(content)
    score = _length_weight(len(words))

    if content and QUESTION_PATTERN.search(content):
        score += 0.20

    score += min(0.15, message.mention_count * 0.05)

    lowered = content.casefold()
    keyword_hits = sum(1 for keyword in TOPIC_KEYWORDS if keyword in lowered)
    score += min(0.15, keyword_hits * 0.03)

    if SHOUTING_PATTERN.search(content) or STRONG_WORD_PATTERN.search(content):
        score += 0.10

    score += _restart_weight(message, state)

    if message.attachment_count > 0:
        score += 0.05
    if message.reply_to_id:
        score += 0.05

    return max(0.0, min(1.0, score))


def should_embed(score: float, threshold: float = 0.3) -> bool:
    return float(score) >= float(threshold)


def embedding_priority(score: float) -> int:
    return max(0, min(100, int(round(float(score) * 100))))
