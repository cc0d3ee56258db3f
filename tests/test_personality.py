from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind.memory.store import MemoryStore  # noqa: E402
from ambient_mind.persona.analysis import RelationshipUpdate  # noqa: E402
from ambient_mind.persona.engine import PersonalityEngine, Relationship, compute_effective_traits  # noqa: E402
from ambient_mind.persona.traits import MOOD_CATALOG, TRAITS, base_traits, stage_for_familiarity  # noqa: E402


START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


def _engine(tmp_path: Path, clock: _Clock | None = None) -> tuple[PersonalityEngine, MemoryStore]:
    store = MemoryStore(tmp_path / "memory.db")
    asyncio.run(store.init())
    return PersonalityEngine(store, None, clock=clock or _Clock()), store


def test_evolve_trait_never_leaves_declared_bounds(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    spec = TRAITS["snarkiness"]

    async def push(delta: float, times: int) -> list[float | None]:
        return [await engine.evolve_trait("snarkiness", delta, "test") for _ in range(times)]

    upward = asyncio.run(push(0.4, 5))
    assert max(value for value in upward if value is not None) == spec.maximum
    assert upward[-1] is None

    downward = asyncio.run(push(-3.0, 3))
    assert downward[0] == spec.minimum
    assert downward[1:] == [None, None]
    state = asyncio.run(engine.get_state())
    assert state.base_traits["snarkiness"] == spec.minimum


def test_negligible_trait_change_writes_no_history(tmp_path: Path) -> None:
    engine, store = _engine(tmp_path)

    assert asyncio.run(engine.evolve_trait("wisdom", 0.0005, "tiny")) is None
    assert asyncio.run(store.get_trait_history()) == []

    assert asyncio.run(engine.evolve_trait("wisdom", 0.02, "reading")) == pytest.approx(0.52)
    history = asyncio.run(engine.trait_history("wisdom"))
    assert len(history) == 1
    assert history[0]["previous_value"] == pytest.approx(0.50)
    assert history[0]["trigger_event"] == "reading"


def test_unknown_trait_and_mood_are_rejected(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    with pytest.raises(ValueError):
        asyncio.run(engine.evolve_trait("charisma", 0.1, "test"))
    with pytest.raises(ValueError):
        asyncio.run(engine.set_mood("ecstatic", "test"))


def test_mood_decays_to_neutral_on_read_after_duration(tmp_path: Path) -> None:
    clock = _Clock()
    engine, store = _engine(tmp_path, clock)

    asyncio.run(engine.set_mood("annoyed", "rude_message"))
    clock.now = START + timedelta(minutes=29)
    assert asyncio.run(engine.get_state()).mood_key == "annoyed"

    clock.now = START + timedelta(minutes=MOOD_CATALOG["annoyed"].duration_minutes)
    state = asyncio.run(engine.get_state())
    assert state.mood_key == "neutral"
    assert state.effective_traits == compute_effective_traits(base_traits(), MOOD_CATALOG["neutral"])

    row = asyncio.run(store.get_personality_state())
    assert row is not None
    assert row["current_mood"] == "neutral"
    history = asyncio.run(engine.mood_history())
    assert [(item["mood_name"], item["trigger_reason"]) for item in history] == [
        ("neutral", "mood_decay"),
        ("annoyed", "rude_message"),
    ]
    assert history[0]["duration_minutes"] == MOOD_CATALOG["annoyed"].duration_minutes


def test_effective_traits_apply_mood_effects_with_clamping(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    state = asyncio.run(engine.set_mood("competitive", "was_challenged"))

    assert state.effective_traits["competitiveness"] == TRAITS["competitiveness"].maximum
    assert state.effective_traits["patience"] == pytest.approx(0.40)
    assert state.base_traits["competitiveness"] == pytest.approx(0.65)
    assert state.mood_triggers[-1]["reason"] == "was_challenged"


def test_mood_trigger_history_is_capped(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    async def flip() -> list[dict[str, object]]:
        state = None
        for index in range(15):
            state = await engine.set_mood("happy" if index % 2 else "smug", f"reason-{index}")
        assert state is not None
        return state.mood_triggers

    triggers = asyncio.run(flip())
    assert len(triggers) == 10
    assert triggers[0]["reason"] == "reason-5"


def test_prompt_context_is_read_only_for_expired_mood(tmp_path: Path) -> None:
    clock = _Clock()
    engine, store = _engine(tmp_path, clock)
    asyncio.run(engine.set_mood("flustered", "received_compliment"))
    clock.now = START + timedelta(hours=3)

    prompt = asyncio.run(engine.build_prompt_context())

    assert "Current mood: Neutral" in prompt
    row = asyncio.run(store.get_personality_state())
    assert row is not None
    assert row["current_mood"] == "flustered"


def test_prompt_context_on_fresh_store_creates_no_state(tmp_path: Path) -> None:
    engine, store = _engine(tmp_path)

    prompt = asyncio.run(engine.build_prompt_context("u1"))

    assert "Current mood: Neutral" in prompt
    assert asyncio.run(store.get_personality_state()) is None
    assert asyncio.run(store.count_relationships()) == 0


@pytest.mark.parametrize(
    ("familiarity", "stage"),
    [
        (0.0, "stranger"),
        (0.19, "stranger"),
        (0.2, "acquaintance"),
        (0.4, "regular"),
        (0.65, "friend"),
        (0.8, "close_friend"),
        (0.95, "family"),
        (1.0, "family"),
    ],
)
def test_stage_is_pure_function_of_familiarity(familiarity: float, stage: str) -> None:
    assert stage_for_familiarity(familiarity).key == stage
    rival = Relationship("u1", affection=0.0, trust=1.0, familiarity=familiarity, rivalry=1.0)
    fond = Relationship("u1", affection=1.0, trust=0.0, familiarity=familiarity, rivalry=0.0)
    assert rival.stage.key == fond.stage.key == stage


def test_relationship_saturates_at_one(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    deltas = {"affection": 1.0, "trust": 1.0, "familiarity": 1.0, "rivalry": 1.0}

    async def apply() -> Relationship:
        relationship = None
        for _ in range(4):
            relationship = await engine.update_relationship("u1", deltas)
        assert relationship is not None
        return relationship

    relationship = asyncio.run(apply())
    stored = asyncio.run(engine.get_relationship("u1"))
    for value in (relationship, stored):
        assert (value.affection, value.trust, value.familiarity, value.rivalry) == (1.0, 1.0, 1.0, 1.0)
    assert stored.interaction_count == 4
    assert stored.stage.key == "family"


def test_relationship_floors_at_zero_and_caps_jokes_and_notes(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    async def apply() -> Relationship:
        relationship = None
        for index in range(25):
            relationship = await engine.update_relationship(
                "u1",
                RelationshipUpdate(
                    deltas={"affection": -1.0, "rivalry": -1.0},
                    inside_joke=f"joke {index}",
                    note=f"note {index}",
                ),
            )
        assert relationship is not None
        return relationship

    relationship = asyncio.run(apply())
    assert relationship.affection == 0.0
    assert relationship.rivalry == 0.0
    assert relationship.inside_jokes == [f"joke {index}" for index in range(15, 25)]
    assert len(relationship.notes) == 20
    assert relationship.notes[0]["text"] == "note 5"


def test_unknown_user_gets_defaults_without_a_write(tmp_path: Path) -> None:
    engine, store = _engine(tmp_path)

    relationship = asyncio.run(engine.get_relationship("nobody"))

    assert relationship.stage.key == "stranger"
    assert relationship.interaction_count == 0
    assert asyncio.run(store.count_relationships()) == 0


def test_prompt_context_renders_mood_traits_and_relationship(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    async def seed() -> None:
        await engine.set_mood("mischievous", "playful_banter")
        await engine.update_relationship(
            "u1",
            RelationshipUpdate(deltas={"familiarity": 0.75}, inside_joke="the toaster incident", nickname="Toast"),
        )

    asyncio.run(seed())
    prompt = asyncio.run(engine.build_prompt_context("u1"))

    assert prompt.startswith("PERSONALITY STATE")
    assert "Current mood: Mischievous" in prompt
    assert "Mood behavior:" in prompt
    assert "Notable traits: " in prompt
    assert "Stage: Close Friend" in prompt
    assert "Familiarity: 85%" in prompt
    assert "Nickname you use for them: Toast" in prompt
    assert "the toaster incident" in prompt


def test_relationship_context_tags_rivals_and_fondness(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    async def seed() -> None:
        await engine.update_relationship("u1", {"rivalry": 0.6})
        await engine.update_relationship("u2", {"affection": 0.5, "familiarity": 0.4})

    asyncio.run(seed())
    context = asyncio.run(engine.build_relationship_context(["u1", "u2", "u3"], {"u1": "Alice"}))

    lines = context.splitlines()
    assert lines[0] == "PEOPLE IN THIS CONVERSATION"
    assert len(lines) == 3
    assert any(line.startswith("- Alice: Stranger") and "[rival]" in line for line in lines)
    assert any(line.startswith("- u2: Regular") and "[secretly fond]" in line for line in lines)
    assert asyncio.run(engine.build_relationship_context([])) == ""
