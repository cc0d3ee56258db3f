from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import deque
from typing import Any, Callable, Dict, List, Mapping

from ..common import as_bool, as_float, collapse_spaces
from ..memory.cache import TTLCache
from ..persona.traits import MOOD_CATALOG
from ..prompts.evaluator import (
    MOOD_EVALUATOR_SCHEMA_HINT,
    RELATIONSHIP_EVALUATOR_SCHEMA_HINT,
    RELATIONSHIP_EVALUATOR_SYSTEM_PROMPT,
    SUMMARY_SCHEMA_HINT,
    SUMMARY_SYSTEM_PROMPT,
    build_mood_evaluator_system_prompt,
    build_mood_evaluator_user_prompt,
    build_relationship_evaluator_user_prompt,
    build_summary_user_prompt,
)
from .contracts import MoodEvaluation, RelationshipEvaluation, SummaryResult

logger = logging.getLogger("ambient_mind")


_PATTERN_KEYS = {
    "isChallenge": "challenge",
    "isCompliment": "compliment",
    "isPlayful": "playful",
    "isVulnerable": "vulnerable",
    "isRude": "rude",
    "isSarcastic": "sarcastic",
    "isPotentialJoke": "potential_joke",
    "isQuestion": "question",
}

_TRUST_KEYS = {
    "sharedPersonalInfo": "shared_personal_info",
    "askedForHelp": "asked_for_help",
    "showedVulnerability": "showed_vulnerability",
    "showedCare": "showed_care",
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _optional_text(value: object, limit: int = 200) -> str | None:
    if value is None:
        return None
    text = collapse_spaces(str(value))
    if not text or text.lower() in {"null", "none", "n/a"}:
        return None
    return text[:limit]


class LLMEvaluator:
    """LLM-backed mood, relationship and summary evaluation with caching and a call budget."""

    RATE_WINDOW_SECONDS = 60.0

    def __init__(
        self,
        llm: Any | None,
        *,
        enabled: bool = True,
        cache_ttl_seconds: float = 60.0,
        rate_limit_per_minute: int = 30,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.llm = llm
        self.enabled = enabled
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.rate_limit_per_minute = max(1, int(rate_limit_per_minute))
        self._clock = clock
        self._cache: TTLCache[str, Dict[str, Any]] = TTLCache(cache_ttl_seconds, max_keys=256, clock=clock)
        self._call_times: deque[float] = deque()
        self._stats = {"calls": 0, "cache_hits": 0, "rate_limited": 0, "failures": 0}

    @property
    def available(self) -> bool:
        if not self.enabled or self.llm is None:
            return False
        if not callable(getattr(self.llm, "json_chat", None)):
            return False
        return bool(getattr(self.llm, "available", True))

    def stats(self) -> Dict[str, object]:
        return {
            **self._stats,
            "available": self.available,
            "cache_size": len(self._cache),
            "calls_in_window": len(self._call_times),
        }

    def _take_rate_slot(self) -> bool:
        now = self._clock()
        while self._call_times and now - self._call_times[0] >= self.RATE_WINDOW_SECONDS:
            self._call_times.popleft()
        if len(self._call_times) >= self.rate_limit_per_minute:
            return False
        self._call_times.append(now)
        return True

    @staticmethod
    def _cache_key(kind: str, system_prompt: str, user_prompt: str) -> str:
        digest = hashlib.sha1()
        for part in (kind, system_prompt, user_prompt):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        return digest.hexdigest()

    async def _call(self, kind: str, system_prompt: str, user_prompt: str, schema_hint: str) -> Dict[str, Any] | None:
        if not self.available:
            return None
        key = self._cache_key(kind, system_prompt, user_prompt)
        cached = self._cache.get(key)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached
        if not self._take_rate_slot():
            self._stats["rate_limited"] += 1
            logger.debug("Evaluator rate limit reached, skipping %s call", kind)
            return None

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        self._stats["calls"] += 1
        try:
            payload = await self.llm.json_chat(  # type: ignore[union-attr]
                messages,
                schema_hint=schema_hint,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._stats["failures"] += 1
            logger.warning("Evaluator %s call failed: %s", kind, exc)
            return None
        if not isinstance(payload, dict):
            self._stats["failures"] += 1
            return None
        self._cache.put(key, payload)
        return payload

    async def evaluate_mood(
        self,
        message: str,
        *,
        relationship_stage: str,
        current_mood: str,
    ) -> MoodEvaluation | None:
        text = collapse_spaces(message)
        if not text:
            return None
        payload = await self._call(
            "mood",
            build_mood_evaluator_system_prompt(MOOD_CATALOG.keys()),
            build_mood_evaluator_user_prompt(text, relationship_stage=relationship_stage, current_mood=current_mood),
            MOOD_EVALUATOR_SCHEMA_HINT,
        )
        if payload is None:
            return None
        return self.parse_mood(payload)

    @staticmethod
    def parse_mood(payload: Mapping[str, Any]) -> MoodEvaluation:
        suggested = str(payload.get("suggestedMood") or "").strip().lower()
        raw_patterns = payload.get("detectedPatterns")
        patterns: Dict[str, bool] = {}
        if isinstance(raw_patterns, Mapping):
            for source_key, target_key in _PATTERN_KEYS.items():
                patterns[target_key] = as_bool(raw_patterns.get(source_key))
        return MoodEvaluation(
            sentiment=_clamp(as_float(payload.get("sentiment")), -1.0, 1.0),
            suggested_mood=suggested if suggested in MOOD_CATALOG else None,
            mood_confidence=_clamp(as_float(payload.get("moodConfidence")), 0.0, 1.0),
            trigger_reason=_optional_text(payload.get("triggerReason"), 200) or "",
            dominant_emotion=_optional_text(payload.get("dominantEmotion"), 40) or "neutral",
            detected_patterns=patterns,
        )

    async def evaluate_relationship(
        self,
        user_message: str,
        bot_response: str,
        current: Dict[str, object],
    ) -> RelationshipEvaluation | None:
        if not collapse_spaces(user_message):
            return None
        payload = await self._call(
            "relationship",
            RELATIONSHIP_EVALUATOR_SYSTEM_PROMPT,
            build_relationship_evaluator_user_prompt(user_message, bot_response, current),
            RELATIONSHIP_EVALUATOR_SCHEMA_HINT,
        )
        if payload is None:
            return None
        return self.parse_relationship(payload)

    @staticmethod
    def parse_relationship(payload: Mapping[str, Any]) -> RelationshipEvaluation:
        raw_deltas = payload.get("relationshipDeltas")
        deltas: Dict[str, float] = {}
        if isinstance(raw_deltas, Mapping):
            for key in ("affection", "trust", "familiarity", "rivalry"):
                if key in raw_deltas:
                    deltas[key] = as_float(raw_deltas.get(key))
        raw_trust = payload.get("trustIndicators")
        trust: Dict[str, bool] = {}
        if isinstance(raw_trust, Mapping):
            for source_key, target_key in _TRUST_KEYS.items():
                trust[target_key] = as_bool(raw_trust.get(source_key))
        quality = str(payload.get("interactionQuality") or "neutral").strip().lower()
        if quality not in {"positive", "neutral", "negative", "mixed"}:
            quality = "neutral"
        return RelationshipEvaluation(
            interaction_quality=quality,
            relationship_deltas=deltas,
            trust_indicators=trust,
            emotional_depth=str(payload.get("emotionalDepth") or "surface").strip().lower(),
            suggested_inside_joke=_optional_text(payload.get("suggestedInsideJoke"), 120),
            noteworthy_moment=_optional_text(payload.get("noteworthyMoment"), 200),
            reasoning=_optional_text(payload.get("reasoning"), 300) or "",
        )

    async def summarize(self, conversation_text: str, period_type: str) -> SummaryResult | None:
        if not conversation_text.strip():
            return None
        payload = await self._call(
            "summary",
            SUMMARY_SYSTEM_PROMPT,
            build_summary_user_prompt(conversation_text, period_type),
            SUMMARY_SCHEMA_HINT,
        )
        if payload is None:
            return None
        summary = _optional_text(payload.get("summary"), 1200)
        if not summary:
            return None
        topics: List[str] = []
        raw_topics = payload.get("topics")
        if isinstance(raw_topics, list):
            for item in raw_topics:
                topic = collapse_spaces(str(item or "")).casefold()[:60]
                if topic and topic not in topics:
                    topics.append(topic)
        return SummaryResult(
            summary=summary,
            topics=topics[:5],
            mood=_optional_text(payload.get("mood"), 40) or "",
        )
