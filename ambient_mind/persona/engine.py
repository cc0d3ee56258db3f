from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping

from ..common import collapse_spaces, parse_iso, to_iso, utc_now
from ..prompts.persona import render_personality_prompt, render_relationship_context
from .analysis import (
    EvaluatorMoodAnalyzer,
    KeywordMoodAnalyzer,
    MessageAnalysis,
    RelationshipUpdate,
    clamp_relationship_deltas,
    fallback_mood_transition,
    fallback_relationship_update,
)
from .traits import (
    INSIDE_JOKE_LIMIT,
    MOOD_CATALOG,
    MOOD_CONFIDENCE_THRESHOLD,
    MOOD_TRIGGER_HISTORY_LIMIT,
    NEUTRAL_MOOD,
    PATTERN_EVOLUTION_INTERVAL,
    RELATIONSHIP_DEFAULTS,
    RELATIONSHIP_NOTE_LIMIT,
    TRAIT_DELTA_FLOOR,
    TRAITS,
    MoodSpec,
    RelationshipStage,
    base_traits,
    stage_for_familiarity,
)

logger = logging.getLogger("ambient_mind")

_RELATIONSHIP_KEYS = ("affection", "trust", "familiarity", "rivalry")


def _unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(slots=True)
class Relationship:
    user_id: str
    affection: float = RELATIONSHIP_DEFAULTS["affection"]
    trust: float = RELATIONSHIP_DEFAULTS["trust"]
    familiarity: float = RELATIONSHIP_DEFAULTS["familiarity"]
    rivalry: float = RELATIONSHIP_DEFAULTS["rivalry"]
    inside_jokes: List[str] = field(default_factory=list)
    nickname: str | None = None
    interaction_count: int = 0
    notes: List[Dict[str, object]] = field(default_factory=list)
    last_interaction_at: str | None = None

    @property
    def stage(self) -> RelationshipStage:
        return stage_for_familiarity(self.familiarity)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Relationship":
        return cls(
            user_id=str(row["user_id"]),
            affection=float(row["affection"]),
            trust=float(row["trust"]),
            familiarity=float(row["familiarity"]),
            rivalry=float(row["rivalry"]),
            inside_jokes=list(row.get("inside_jokes") or []),
            nickname=row.get("nickname"),
            interaction_count=int(row.get("interaction_count") or 0),
            notes=list(row.get("notes") or []),
            last_interaction_at=row.get("last_interaction_at"),
        )

    def as_context(self) -> Dict[str, object]:
        return {
            "stage": self.stage.key,
            "affection": round(self.affection, 3),
            "trust": round(self.trust, 3),
            "familiarity": round(self.familiarity, 3),
            "rivalry": round(self.rivalry, 3),
        }


@dataclass(slots=True)
class PersonalitySnapshot:
    base_traits: Dict[str, float]
    effective_traits: Dict[str, float]
    mood: MoodSpec
    mood_started_at: datetime
    mood_triggers: List[Dict[str, object]] = field(default_factory=list)

    @property
    def mood_key(self) -> str:
        return self.mood.key

    @property
    def mood_expires_at(self) -> datetime:
        return self.mood_started_at + timedelta(minutes=self.mood.duration_minutes)


@dataclass(slots=True)
class InteractionResult:
    analysis: MessageAnalysis
    mood_before: str
    mood_after: str
    mood_source: str
    relationship: Relationship
    relationship_source: str
    applied_deltas: Dict[str, float]
    relationship_updated: bool = True
    pattern_pass: bool = False

    @property
    def mood_changed(self) -> bool:
        return self.mood_before != self.mood_after


def compute_effective_traits(base: Mapping[str, float], mood: MoodSpec) -> Dict[str, float]:
    effective: Dict[str, float] = {}
    for key, spec in TRAITS.items():
        value = float(base.get(key, spec.base)) + float(mood.effects.get(key, 0.0))
        effective[key] = spec.clamp(value)
    return effective


class PersonalityEngine:
    """Mood, trait and per-user relationship state over a single persisted personality row."""

    def __init__(
        self,
        memory: Any,
        evaluator: Any | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.memory = memory
        self.evaluator = evaluator
        self._clock = clock
        self._llm_analyzer = EvaluatorMoodAnalyzer(evaluator)
        self._keyword_analyzer = KeywordMoodAnalyzer()
        self._initialized = False

    async def initialize(self) -> None:
        await self.memory.ensure_personality_state(
            base_traits(),
            mood=NEUTRAL_MOOD,
            started_at=to_iso(self._clock()),
        )
        self._initialized = True

    async def _load_row(self) -> Dict[str, Any]:
        if not self._initialized:
            await self.initialize()
        row = await self.memory.get_personality_state()
        if row is None:
            await self.initialize()
            row = await self.memory.get_personality_state()
        if row is None:
            raise RuntimeError("Personality state row is missing")
        return row

    def _snapshot(self, row: Mapping[str, Any], now: datetime) -> tuple[PersonalitySnapshot, bool]:
        traits = base_traits()
        traits.update({key: float(value) for key, value in dict(row.get("traits") or {}).items() if key in TRAITS})
        mood = MOOD_CATALOG.get(str(row.get("current_mood") or NEUTRAL_MOOD), MOOD_CATALOG[NEUTRAL_MOOD])
        started_at = parse_iso(row.get("mood_started_at")) or now
        triggers = list(row.get("mood_triggers") or [])
        expired = mood.key != NEUTRAL_MOOD and now >= started_at + timedelta(minutes=mood.duration_minutes)
        if expired:
            mood = MOOD_CATALOG[NEUTRAL_MOOD]
            started_at = now
        snapshot = PersonalitySnapshot(
            base_traits=traits,
            effective_traits=compute_effective_traits(traits, mood),
            mood=mood,
            mood_started_at=started_at,
            mood_triggers=triggers,
        )
        return snapshot, expired

    async def get_state(self) -> PersonalitySnapshot:
        """Reads always decay an expired mood back to neutral and persist that."""
        now = self._clock()
        row = await self._load_row()
        snapshot, expired = self._snapshot(row, now)
        if expired:
            lapsed = MOOD_CATALOG[str(row["current_mood"])]
            await self.memory.save_mood_transition(
                mood=NEUTRAL_MOOD,
                started_at=to_iso(now),
                triggers=snapshot.mood_triggers,
                reason="mood_decay",
                duration_minutes=lapsed.duration_minutes,
            )
            logger.debug("[persona] mood %s expired, back to neutral", row.get("current_mood"))
        return snapshot

    async def set_mood(self, mood: str, reason: str = "") -> PersonalitySnapshot:
        spec = MOOD_CATALOG.get(mood)
        if spec is None:
            raise ValueError(f"Unknown mood: {mood}")
        now = self._clock()
        row = await self._load_row()
        triggers = list(row.get("mood_triggers") or [])
        triggers.append({"mood": spec.key, "reason": reason, "at": to_iso(now)})
        triggers = triggers[-MOOD_TRIGGER_HISTORY_LIMIT:]
        await self.memory.save_mood_transition(
            mood=spec.key,
            started_at=to_iso(now),
            triggers=triggers,
            reason=reason,
            duration_minutes=spec.duration_minutes,
        )
        logger.info("[persona] mood -> %s (%s)", spec.key, reason or "-")
        row = dict(row, current_mood=spec.key, mood_started_at=to_iso(now), mood_triggers=triggers)
        snapshot, _ = self._snapshot(row, now)
        return snapshot

    async def evolve_trait(self, trait: str, delta: float, trigger: str) -> float | None:
        """Returns the new value, or None when the clamped change is negligible."""
        spec = TRAITS.get(trait)
        if spec is None:
            raise ValueError(f"Unknown trait: {trait}")
        row = await self._load_row()
        traits = base_traits()
        traits.update({key: float(value) for key, value in dict(row.get("traits") or {}).items() if key in TRAITS})
        previous = traits[trait]
        updated = spec.clamp(previous + float(delta))
        if abs(updated - previous) < TRAIT_DELTA_FLOOR:
            return None
        traits[trait] = updated
        await self.memory.save_trait_change(
            traits=traits,
            trait_name=trait,
            new_value=updated,
            previous_value=previous,
            trigger=trigger,
            changed_at=to_iso(self._clock()),
        )
        return updated

    async def get_relationship(self, user_id: str) -> Relationship:
        row = await self.memory.get_relationship_row(str(user_id))
        if row is None:
            return Relationship(user_id=str(user_id))
        return Relationship.from_row(row)

    async def update_relationship(
        self,
        user_id: str,
        update: RelationshipUpdate | Mapping[str, float],
    ) -> Relationship:
        if not isinstance(update, RelationshipUpdate):
            update = RelationshipUpdate(deltas={key: float(value) for key, value in update.items()})
        relationship = await self.get_relationship(user_id)
        for key in _RELATIONSHIP_KEYS:
            delta = float(update.deltas.get(key, 0.0) or 0.0)
            setattr(relationship, key, _unit(getattr(relationship, key) + delta))

        joke = collapse_spaces(update.inside_joke or "")
        if joke and joke not in relationship.inside_jokes:
            relationship.inside_jokes = (relationship.inside_jokes + [joke])[-INSIDE_JOKE_LIMIT:]
        now = to_iso(self._clock())
        note = collapse_spaces(update.note or "")
        if note:
            relationship.notes = (relationship.notes + [{"text": note, "at": now}])[-RELATIONSHIP_NOTE_LIMIT:]
        if update.nickname:
            relationship.nickname = collapse_spaces(update.nickname)[:64]
        relationship.interaction_count += 1
        relationship.last_interaction_at = now

        await self.memory.save_relationship(
            user_id=relationship.user_id,
            affection=relationship.affection,
            trust=relationship.trust,
            familiarity=relationship.familiarity,
            rivalry=relationship.rivalry,
            inside_jokes=relationship.inside_jokes,
            nickname=relationship.nickname,
            interaction_count=relationship.interaction_count,
            notes=relationship.notes,
            last_interaction_at=now,
        )
        return relationship

    async def _nudge(self, trait: str, delta: float, trigger: str) -> None:
        try:
            await self.evolve_trait(trait, delta, trigger)
        except Exception as exc:
            logger.warning("Trait nudge %s dropped: %s", trait, exc)

    async def _evaluate_relationship(self, message: str, response: str, relationship: Relationship) -> Any | None:
        evaluate = getattr(self.evaluator, "evaluate_relationship", None)
        if not callable(evaluate) or not bool(getattr(self.evaluator, "available", True)):
            return None
        try:
            return await evaluate(message, response, relationship.as_context())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Relationship evaluator failed: %s", exc)
            return None

    async def process_interaction(self, user_id: str, message: str, response: str = "") -> InteractionResult:
        """One conversational turn. Always completes; storage failures only drop the affected update."""
        user_id = str(user_id)
        try:
            relationship = await self.get_relationship(user_id)
        except Exception as exc:
            logger.warning("Relationship read failed for user=%s: %s", user_id, exc)
            relationship = Relationship(user_id=user_id)
        try:
            mood_before = (await self.get_state()).mood_key
        except Exception as exc:
            logger.warning("Personality state read failed: %s", exc)
            mood_before = NEUTRAL_MOOD

        analysis = await self._llm_analyzer.analyze(
            message,
            relationship_stage=relationship.stage.key,
            current_mood=mood_before,
        )
        if analysis is None:
            analysis = self._keyword_analyzer.analyze(message)

        mood_after = mood_before
        mood_source = "none"
        if (
            analysis.used_llm
            and analysis.suggested_mood
            and analysis.mood_confidence > MOOD_CONFIDENCE_THRESHOLD
        ):
            try:
                mood_after = (await self.set_mood(analysis.suggested_mood, analysis.trigger_reason or "llm_analysis")).mood_key
                mood_source = "llm"
            except Exception as exc:
                logger.warning("Mood update dropped: %s", exc)
        else:
            transition = fallback_mood_transition(analysis)
            if transition is not None:
                try:
                    mood_after = (await self.set_mood(transition.mood, transition.reason)).mood_key
                    mood_source = "fallback"
                except Exception as exc:
                    logger.warning("Mood update dropped: %s", exc)
                for nudge in transition.nudges:
                    await self._nudge(nudge.trait, nudge.delta, nudge.trigger)

        evaluation = await self._evaluate_relationship(message, response, relationship)
        if evaluation is not None:
            relationship_source = "llm"
            update = RelationshipUpdate(
                deltas=clamp_relationship_deltas(dict(evaluation.relationship_deltas or {})),
                inside_joke=evaluation.suggested_inside_joke,
                note=evaluation.noteworthy_moment,
            )
            indicators = dict(evaluation.trust_indicators or {})
            if indicators.get("showed_vulnerability"):
                await self._nudge("vulnerability", 0.005, "shared_vulnerability")
                await self._nudge("protectiveness", 0.003, "trusted_with_vulnerability")
            if indicators.get("showed_care"):
                await self._nudge("agreeableness", 0.003, "showed_care")
        else:
            relationship_source = "fallback"
            update = fallback_relationship_update(analysis, message)

        updated = True
        try:
            relationship = await self.update_relationship(user_id, update)
        except Exception as exc:
            logger.warning("Relationship update dropped for user=%s: %s", user_id, exc)
            updated = False

        pattern_pass = False
        if updated and relationship.interaction_count % PATTERN_EVOLUTION_INTERVAL == 0:
            await self._evolve_from_patterns(relationship)
            pattern_pass = True

        return InteractionResult(
            analysis=analysis,
            mood_before=mood_before,
            mood_after=mood_after,
            mood_source=mood_source,
            relationship=relationship,
            relationship_source=relationship_source,
            applied_deltas=dict(update.deltas),
            relationship_updated=updated,
            pattern_pass=pattern_pass,
        )

    async def _evolve_from_patterns(self, relationship: Relationship) -> None:
        if relationship.affection > 0.7:
            await self._nudge("agreeableness", 0.002, "bonding_with_users")
        if relationship.rivalry > 0.5:
            await self._nudge("competitiveness", 0.003, "ongoing_rivalry")

    async def build_prompt_context(self, user_id: str | None = None) -> str:
        """Read-only: an expired mood renders as neutral without being written back,
        and a missing personality row renders base traits without being created."""
        try:
            row = await self.memory.get_personality_state() or {}
            snapshot, _ = self._snapshot(row, self._clock())
            relationship = await self.get_relationship(user_id) if user_id else None
        except Exception as exc:
            logger.warning("Personality prompt context unavailable: %s", exc)
            return ""
        return render_personality_prompt(
            mood=snapshot.mood,
            effective_traits=snapshot.effective_traits,
            relationship=relationship,
        )

    async def build_relationship_context(
        self,
        user_ids: Iterable[str],
        names: Mapping[str, str] | None = None,
    ) -> str:
        try:
            rows = await self.memory.get_relationship_rows(user_ids)
        except Exception as exc:
            logger.warning("Relationship context unavailable: %s", exc)
            return ""
        return render_relationship_context([Relationship.from_row(row) for row in rows], names)

    async def mood_history(self, limit: int = 20) -> List[Dict[str, object]]:
        return await self.memory.get_mood_history(limit)

    async def trait_history(self, trait: str | None = None, limit: int = 20) -> List[Dict[str, object]]:
        return await self.memory.get_trait_history(trait, limit)
