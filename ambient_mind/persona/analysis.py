from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from ..common import collapse_spaces
from .traits import RELATIONSHIP_DELTA_BOUNDS

logger = logging.getLogger("ambient_mind")

_POSITIVE_WORDS = ("love", "like", "thanks", "awesome", "great", "amazing", "cute", "best", "happy", "appreciate", "❤️", "💕", "😊")
_NEGATIVE_WORDS = ("hate", "stupid", "dumb", "annoying", "worst", "bad", "ugly", "boring", "shut up", "stfu")

_CHALLENGE = re.compile(r"\b(bet|fight me|prove|can't|couldn't|dare)\b", re.IGNORECASE)
_COMPLIMENT = re.compile(r"\b(cute|smart|best|love you|thank|amazing)\b", re.IGNORECASE)
_PLAYFUL = re.compile(r"\b(lol|lmao|haha|jk|tease|poke)\b", re.IGNORECASE)
_PLAYFUL_EMOJI = re.compile("[😂🤣😜😏]")
_VULNERABLE = re.compile(r"\b(sad|depressed|anxious|scared|lonely|struggling|help me)\b", re.IGNORECASE)
_RUDE = re.compile(r"\b(shut up|stfu|hate you|stupid|dumb|idiot)\b", re.IGNORECASE)
_POTENTIAL_JOKE = re.compile(r"\b(remember when|that time|lmao|haha|iconic)\b", re.IGNORECASE)

JOKE_CAPTURE_ONE_IN = 10
JOKE_REFERENCE_WORDS = 6
JOKE_REFERENCE_CHARS = 50


@dataclass(slots=True)
class MessageAnalysis:
    sentiment: float = 0.0
    suggested_mood: str | None = None
    mood_confidence: float = 0.0
    trigger_reason: str = ""
    dominant_emotion: str = "neutral"
    is_challenge: bool = False
    is_compliment: bool = False
    is_playful: bool = False
    is_vulnerable: bool = False
    is_rude: bool = False
    is_sarcastic: bool = False
    is_potential_joke: bool = False
    is_question: bool = False
    used_llm: bool = False


@dataclass(slots=True)
class TraitNudge:
    trait: str
    delta: float
    trigger: str


@dataclass(slots=True)
class MoodTransition:
    mood: str
    reason: str
    nudges: List[TraitNudge] = field(default_factory=list)


@dataclass(slots=True)
class RelationshipUpdate:
    deltas: Dict[str, float] = field(default_factory=dict)
    inside_joke: str | None = None
    note: str | None = None
    nickname: str | None = None


class KeywordMoodAnalyzer:
    """Offline analyzer; needs no network and never fails."""

    name = "keyword"

    def analyze(self, message: str) -> MessageAnalysis:
        text = message or ""
        lower = text.casefold()
        sentiment = 0.0
        for word in _POSITIVE_WORDS:
            if word in lower:
                sentiment += 0.2
        for word in _NEGATIVE_WORDS:
            if word in lower:
                sentiment -= 0.3
        return MessageAnalysis(
            sentiment=max(-1.0, min(1.0, sentiment)),
            is_challenge=bool(_CHALLENGE.search(text)),
            is_compliment=bool(_COMPLIMENT.search(text)),
            is_playful=bool(_PLAYFUL.search(text) or _PLAYFUL_EMOJI.search(text)),
            is_vulnerable=bool(_VULNERABLE.search(text)),
            is_rude=bool(_RUDE.search(text)),
            is_potential_joke=bool(_POTENTIAL_JOKE.search(text)),
            is_question="?" in text,
        )


class EvaluatorMoodAnalyzer:
    name = "llm"

    def __init__(self, evaluator: Any | None) -> None:
        self.evaluator = evaluator

    @property
    def available(self) -> bool:
        if self.evaluator is None or not callable(getattr(self.evaluator, "evaluate_mood", None)):
            return False
        return bool(getattr(self.evaluator, "available", True))

    async def analyze(self, message: str, *, relationship_stage: str, current_mood: str) -> MessageAnalysis | None:
        if not self.available:
            return None
        try:
            result = await self.evaluator.evaluate_mood(
                message,
                relationship_stage=relationship_stage,
                current_mood=current_mood,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Mood evaluator failed: %s", exc)
            return None
        if result is None:
            return None
        patterns = dict(getattr(result, "detected_patterns", None) or {})
        return MessageAnalysis(
            sentiment=float(result.sentiment),
            suggested_mood=result.suggested_mood,
            mood_confidence=float(result.mood_confidence),
            trigger_reason=str(result.trigger_reason or ""),
            dominant_emotion=str(result.dominant_emotion or "neutral"),
            is_challenge=bool(patterns.get("challenge")),
            is_compliment=bool(patterns.get("compliment")),
            is_playful=bool(patterns.get("playful")),
            is_vulnerable=bool(patterns.get("vulnerable")),
            is_rude=bool(patterns.get("rude")),
            is_sarcastic=bool(patterns.get("sarcastic")),
            is_potential_joke=bool(patterns.get("potential_joke") or patterns.get("playful")),
            is_question="?" in (message or ""),
            used_llm=True,
        )


def fallback_mood_transition(analysis: MessageAnalysis) -> MoodTransition | None:
    """First matching rule wins; vulnerability outranks everything."""
    if analysis.is_vulnerable:
        return MoodTransition(
            "protective",
            "someone_vulnerable",
            [
                TraitNudge("protectiveness", 0.01, "protected_someone"),
                TraitNudge("vulnerability", 0.005, "witnessed_vulnerability"),
            ],
        )
    if analysis.is_rude and analysis.sentiment < 0:
        return MoodTransition("annoyed", "rude_message", [TraitNudge("patience", -0.005, "dealt_with_rudeness")])
    if analysis.is_challenge:
        return MoodTransition(
            "competitive",
            "was_challenged",
            [TraitNudge("competitiveness", 0.01, "challenge_received")],
        )
    if analysis.is_compliment and analysis.sentiment > 0:
        return MoodTransition("flustered", "received_compliment", [TraitNudge("guardedness", 0.005, "got_flustered")])
    if analysis.is_playful:
        return MoodTransition("mischievous", "playful_banter", [TraitNudge("playfulness", 0.005, "playful_exchange")])
    return None


def extract_joke_reference(message: str) -> str:
    words = " ".join(collapse_spaces(message).split(" ")[:JOKE_REFERENCE_WORDS])
    if len(words) > JOKE_REFERENCE_CHARS:
        return words[:JOKE_REFERENCE_CHARS] + "..."
    return words


def should_capture_joke(message: str) -> bool:
    digest = hashlib.sha1(collapse_spaces(message).casefold().encode("utf-8")).digest()
    return digest[0] % JOKE_CAPTURE_ONE_IN == 0


def fallback_relationship_update(analysis: MessageAnalysis, message: str) -> RelationshipUpdate:
    if analysis.sentiment > 0:
        affection = 0.005
    elif analysis.sentiment < -0.3:
        affection = -0.002
    else:
        affection = 0.0
    update = RelationshipUpdate(
        deltas={
            "familiarity": 0.01,
            "affection": affection,
            "trust": 0.02 if analysis.is_vulnerable else 0.002,
        }
    )
    if analysis.is_potential_joke and should_capture_joke(message):
        update.inside_joke = extract_joke_reference(message)
    return update


def clamp_relationship_deltas(deltas: Mapping[str, object]) -> Dict[str, float]:
    """Every known key gets a value inside its per-call safety bounds; unknown keys are dropped."""
    clamped: Dict[str, float] = {}
    for key, (low, high, default) in RELATIONSHIP_DELTA_BOUNDS.items():
        raw = deltas.get(key)
        try:
            value = float(raw) if raw is not None else default
        except (TypeError, ValueError):
            value = default
        if value != value:
            value = default
        clamped[key] = max(low, min(high, value))
    return clamped
