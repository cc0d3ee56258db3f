from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind.memory.store import MemoryStore  # noqa: E402
from ambient_mind.persona import analysis  # noqa: E402
from ambient_mind.persona.analysis import (  # noqa: E402
    KeywordMoodAnalyzer,
    MessageAnalysis,
    clamp_relationship_deltas,
    extract_joke_reference,
    fallback_mood_transition,
    fallback_relationship_update,
    should_capture_joke,
)
from ambient_mind.persona.engine import PersonalityEngine  # noqa: E402
from ambient_mind.services.contracts import MoodEvaluation, RelationshipEvaluation  # noqa: E402


class _FakeEvaluator:
    def __init__(
        self,
        mood: MoodEvaluation | None = None,
        relationship: RelationshipEvaluation | None = None,
        *,
        fail: bool = False,
    ) -> None:
        self.mood = mood
        self.relationship = relationship
        self.fail = fail
        self.relationship_calls: List[Dict[str, object]] = []

    async def evaluate_mood(self, message: str, *, relationship_stage: str, current_mood: str) -> MoodEvaluation | None:
        if self.fail:
            raise RuntimeError("evaluator down")
        return self.mood

    async def evaluate_relationship(
        self,
        user_message: str,
        bot_response: str,
        current: Dict[str, object],
    ) -> RelationshipEvaluation | None:
        if self.fail:
            raise RuntimeError("evaluator down")
        self.relationship_calls.append(dict(current))
        return self.relationship


def _engine(tmp_path: Path, evaluator: Any | None = None) -> tuple[PersonalityEngine, MemoryStore]:
    store = MemoryStore(tmp_path / "memory.db")
    asyncio.run(store.init())
    return PersonalityEngine(store, evaluator), store


def test_keyword_analyzer_scores_and_clamps_sentiment() -> None:
    analyzer = KeywordMoodAnalyzer()

    assert analyzer.analyze("love this, awesome, great, amazing, best day, so happy").sentiment == 1.0
    assert analyzer.analyze("i hate this stupid dumb annoying thing").sentiment == -1.0
    assert analyzer.analyze("what time is it").sentiment == 0.0

    flags = analyzer.analyze("I bet you can't beat me lol?")
    assert flags.is_challenge and flags.is_playful and flags.is_question
    assert not flags.is_vulnerable
    assert flags.used_llm is False


@pytest.mark.parametrize(
    ("fields", "mood"),
    [
        ({"is_vulnerable": True, "is_rude": True, "sentiment": -0.5}, "protective"),
        ({"is_rude": True, "sentiment": -0.3, "is_challenge": True}, "annoyed"),
        ({"is_rude": True, "sentiment": 0.0, "is_challenge": True}, "competitive"),
        ({"is_compliment": True, "sentiment": 0.2, "is_playful": True}, "flustered"),
        ({"is_compliment": True, "sentiment": 0.0, "is_playful": True}, "mischievous"),
        ({"sentiment": 0.9}, None),
    ],
)
def test_fallback_mood_rules_follow_priority(fields: Dict[str, Any], mood: str | None) -> None:
    transition = fallback_mood_transition(MessageAnalysis(**fields))

    assert (transition.mood if transition else None) == mood


def test_fallback_relationship_update_deltas() -> None:
    warm = fallback_relationship_update(MessageAnalysis(sentiment=0.4), "thanks!")
    cold = fallback_relationship_update(MessageAnalysis(sentiment=-0.6), "ugh")
    flat = fallback_relationship_update(MessageAnalysis(sentiment=-0.2, is_vulnerable=True), "i'm scared")

    assert warm.deltas == {"familiarity": 0.01, "affection": 0.005, "trust": 0.002}
    assert cold.deltas["affection"] == -0.002
    assert flat.deltas["affection"] == 0.0
    assert flat.deltas["trust"] == 0.02


def test_joke_capture_is_deterministic_and_references_are_short(monkeypatch: pytest.MonkeyPatch) -> None:
    message = "remember when we set the kitchen on fire lmao"

    assert should_capture_joke(message) == should_capture_joke(message.upper())
    assert extract_joke_reference(message) == "remember when we set the kitchen"
    assert extract_joke_reference("x" * 80) == "x" * 50 + "..."

    monkeypatch.setattr(analysis, "should_capture_joke", lambda text: True)
    update = fallback_relationship_update(MessageAnalysis(is_potential_joke=True), message)
    assert update.inside_joke == "remember when we set the kitchen"

    monkeypatch.setattr(analysis, "should_capture_joke", lambda text: False)
    assert fallback_relationship_update(MessageAnalysis(is_potential_joke=True), message).inside_joke is None


def test_evaluator_deltas_are_clamped_to_safety_bounds() -> None:
    clamped = clamp_relationship_deltas({"affection": 0.2, "trust": float("nan"), "rivalry": "oops", "bogus": 1.0})

    assert clamped == {"affection": 0.05, "trust": 0.002, "familiarity": 0.01, "rivalry": 0.0}
    assert clamp_relationship_deltas({"familiarity": -1.0})["familiarity"] == 0.005


def test_offline_interaction_uses_keyword_fallbacks(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    result = asyncio.run(engine.process_interaction("u1", "you're so cute, thanks!", "no u"))

    assert result.mood_before == "neutral"
    assert result.mood_after == "flustered"
    assert result.mood_source == "fallback"
    assert result.mood_changed
    assert result.relationship_source == "fallback"
    assert result.relationship.interaction_count == 1
    assert result.relationship.familiarity == pytest.approx(0.11)
    assert result.relationship.affection == pytest.approx(0.305)
    assert result.relationship.trust == pytest.approx(0.302)

    state = asyncio.run(engine.get_state())
    assert state.base_traits["guardedness"] == pytest.approx(0.755)


def test_offline_vulnerable_and_rude_messages(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    sad = asyncio.run(engine.process_interaction("u1", "i feel so lonely and sad"))
    rude = asyncio.run(engine.process_interaction("u2", "shut up you stupid bot"))
    plain = asyncio.run(engine.process_interaction("u3", "what time is it"))

    assert sad.mood_after == "protective"
    assert sad.relationship.trust == pytest.approx(0.32)
    assert rude.mood_after == "annoyed"
    assert rude.relationship.affection == pytest.approx(0.298)
    assert plain.mood_source == "none"
    assert plain.mood_after == "annoyed"

    traits = asyncio.run(engine.get_state()).base_traits
    assert traits["protectiveness"] == pytest.approx(0.61)
    assert traits["patience"] == pytest.approx(0.495)


def test_confident_llm_verdict_drives_mood_and_clamped_relationship(tmp_path: Path) -> None:
    evaluator = _FakeEvaluator(
        MoodEvaluation(
            sentiment=0.5,
            suggested_mood="happy",
            mood_confidence=0.9,
            trigger_reason="good_news",
            detected_patterns={"playful": True},
        ),
        RelationshipEvaluation(
            interaction_quality="positive",
            relationship_deltas={"affection": 0.5, "trust": -0.9, "familiarity": 0.0, "rivalry": 0.0},
            trust_indicators={"showed_care": True},
            suggested_inside_joke="the pineapple incident",
            noteworthy_moment="shared a strong pizza opinion",
        ),
    )
    engine, _ = _engine(tmp_path, evaluator)

    result = asyncio.run(engine.process_interaction("u1", "I got the job!!", "told you so"))

    assert result.analysis.used_llm
    assert result.analysis.is_potential_joke
    assert result.mood_source == "llm"
    assert result.mood_after == "happy"
    assert result.relationship_source == "llm"
    assert result.applied_deltas == {"affection": 0.05, "trust": -0.03, "familiarity": 0.005, "rivalry": 0.0}
    assert result.relationship.affection == pytest.approx(0.35)
    assert result.relationship.trust == pytest.approx(0.27)
    assert result.relationship.familiarity == pytest.approx(0.105)
    assert result.relationship.inside_jokes == ["the pineapple incident"]
    assert result.relationship.notes[0]["text"] == "shared a strong pizza opinion"
    assert evaluator.relationship_calls[0]["stage"] == "stranger"

    state = asyncio.run(engine.get_state())
    assert state.mood_triggers[-1]["reason"] == "good_news"
    assert state.base_traits["agreeableness"] == pytest.approx(0.453)


def test_low_confidence_llm_verdict_falls_back_to_rules(tmp_path: Path) -> None:
    evaluator = _FakeEvaluator(
        MoodEvaluation(
            sentiment=0.1,
            suggested_mood="happy",
            mood_confidence=0.6,
            detected_patterns={"challenge": True},
        ),
        None,
    )
    engine, _ = _engine(tmp_path, evaluator)

    result = asyncio.run(engine.process_interaction("u1", "bet you can't solve this"))

    assert result.analysis.used_llm
    assert result.mood_source == "fallback"
    assert result.mood_after == "competitive"
    assert result.relationship_source == "fallback"


def test_failing_evaluator_degrades_to_offline_path(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path, _FakeEvaluator(fail=True))

    result = asyncio.run(engine.process_interaction("u1", "you're the best, thanks"))

    assert result.analysis.used_llm is False
    assert result.mood_after == "flustered"
    assert result.relationship_source == "fallback"
    assert result.relationship_updated


def test_pattern_evolution_runs_every_twentieth_interaction(tmp_path: Path) -> None:
    engine, store = _engine(tmp_path)
    asyncio.run(
        store.save_relationship(
            user_id="u1",
            affection=0.8,
            trust=0.5,
            familiarity=0.5,
            rivalry=0.6,
            inside_jokes=[],
            nickname=None,
            interaction_count=18,
            notes=[],
        )
    )

    nineteenth = asyncio.run(engine.process_interaction("u1", "ok"))
    twentieth = asyncio.run(engine.process_interaction("u1", "ok"))

    assert nineteenth.pattern_pass is False
    assert twentieth.pattern_pass is True
    assert twentieth.relationship.interaction_count == 20
    traits = asyncio.run(engine.get_state()).base_traits
    assert traits["agreeableness"] == pytest.approx(0.452)
    assert traits["competitiveness"] == pytest.approx(0.653)


def test_storage_failures_only_drop_the_affected_update(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine, store = _engine(tmp_path)
    asyncio.run(engine.initialize())

    async def _broken(**kwargs: object) -> None:
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "save_relationship", _broken)
    result = asyncio.run(engine.process_interaction("u1", "i bet you can't"))
    assert result.mood_after == "competitive"
    assert result.relationship_updated is False
    assert result.pattern_pass is False

    monkeypatch.undo()
    monkeypatch.setattr(store, "save_mood_transition", _broken)
    result = asyncio.run(engine.process_interaction("u1", "lol haha"))
    assert result.mood_after == result.mood_before == "competitive"
    assert result.mood_source == "none"
    assert result.relationship_updated is True
    assert asyncio.run(engine.get_relationship("u1")).interaction_count == 1
