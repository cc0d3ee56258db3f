from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence


@dataclass(slots=True)
class EmbeddingResult:
    success: bool
    vectors: List[List[float]] = field(default_factory=list)
    model: str = ""
    error: str = ""


@dataclass(slots=True)
class MoodEvaluation:
    sentiment: float
    suggested_mood: str | None
    mood_confidence: float
    trigger_reason: str = ""
    dominant_emotion: str = ""
    detected_patterns: Dict[str, bool] = field(default_factory=dict)


@dataclass(slots=True)
class RelationshipEvaluation:
    interaction_quality: str
    relationship_deltas: Dict[str, float] = field(default_factory=dict)
    trust_indicators: Dict[str, bool] = field(default_factory=dict)
    emotional_depth: str = "surface"
    suggested_inside_joke: str | None = None
    noteworthy_moment: str | None = None
    reasoning: str = ""


@dataclass(slots=True)
class SummaryResult:
    summary: str
    topics: List[str] = field(default_factory=list)
    mood: str = ""


class Embedder(Protocol):
    @property
    def available(self) -> bool: ...

    async def embed(self, texts: str | Sequence[str]) -> EmbeddingResult: ...


class JsonChatBackend(Protocol):
    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema_hint: str,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
    ) -> Dict[str, Any] | None: ...


class Evaluator(Protocol):
    async def evaluate_mood(
        self,
        message: str,
        *,
        relationship_stage: str,
        current_mood: str,
    ) -> MoodEvaluation | None: ...

    async def evaluate_relationship(
        self,
        user_message: str,
        bot_response: str,
        current: Dict[str, object],
    ) -> RelationshipEvaluation | None: ...

    async def summarize(self, conversation_text: str, period_type: str) -> SummaryResult | None: ...
