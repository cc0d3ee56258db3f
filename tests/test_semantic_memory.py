from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ambient_mind.memory.semantic import SemanticMemory, extract_memory_candidates  # noqa: E402
from ambient_mind.memory.store import MemoryStore  # noqa: E402
from ambient_mind.services.contracts import EmbeddingResult  # noqa: E402


VOCABULARY = ("pizza", "cat", "coffee", "hiking", "guitar")


class _KeywordEmbedder:
    """Bag-of-words over a tiny vocabulary; texts sharing a word land close together."""

    def __init__(self) -> None:
        self.available = True
        self.calls = 0

    async def embed(self, texts):  # type: ignore[no-untyped-def]
        batch = [texts] if isinstance(texts, str) else list(texts)
        self.calls += 1
        vectors = [[float(text.casefold().count(word)) for word in VOCABULARY] for text in batch]
        return EmbeddingResult(success=True, vectors=vectors, model="keyword-embed")


class _FailingEmbedder:
    available = True

    async def embed(self, texts):  # type: ignore[no-untyped-def]
        raise ConnectionError("network down")


def _store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "memory.db")
    asyncio.run(store.init())
    return store


def _seed(memory: SemanticMemory) -> dict[str, int]:
    async def run() -> dict[str, int]:
        return {
            "pizza": await memory.store_memory("Loves pineapple pizza", "preference", user_id="u1", importance=0.6),
            "cat": await memory.store_memory("Has a cat called Miso", "fact", user_id="u1", importance=0.7),
            "mascot": await memory.store_memory("The server mascot is a cat", "lore", importance=0.9),
            "coffee": await memory.store_memory("Drinks coffee every morning", "fact", user_id="u2", importance=0.8),
        }

    return asyncio.run(run())


def test_search_ranks_by_similarity_within_user_scope(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, _KeywordEmbedder())
    ids = _seed(memory)

    pizza_hits = asyncio.run(memory.search("what pizza should I order", user_id="u1"))
    cat_hits = asyncio.run(memory.search("tell me about the cat", user_id="u1"))
    global_hits = asyncio.run(memory.search("cat", user_id=None))

    assert [hit.id for hit in pizza_hits] == [ids["pizza"]]
    assert pizza_hits[0].similarity == pytest.approx(1.0)
    assert {hit.id for hit in cat_hits} == {ids["cat"], ids["mascot"]}
    assert ids["coffee"] not in {hit.id for hit in cat_hits}
    assert [hit.id for hit in global_hits] == [ids["mascot"]]


def test_search_bumps_access_count_of_returned_hits_only(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, _KeywordEmbedder())
    ids = _seed(memory)

    asyncio.run(memory.search("pizza tonight?", user_id="u1"))

    pizza = asyncio.run(store.get_semantic_memory(ids["pizza"]))
    cat = asyncio.run(store.get_semantic_memory(ids["cat"]))
    assert pizza is not None and cat is not None
    assert pizza["access_count"] == 1
    assert pizza["last_accessed_at"] is not None
    assert cat["access_count"] == 0


def test_search_falls_back_to_top_importance_without_embeddings(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, None)
    ids = _seed(memory)

    hits = asyncio.run(memory.search("anything at all", user_id="u1", limit=2))

    assert [hit.id for hit in hits] == [ids["mascot"], ids["cat"]]
    assert all(hit.similarity is None for hit in hits)


def test_search_degrades_when_embedder_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _seed(SemanticMemory(store, _KeywordEmbedder()))
    memory = SemanticMemory(store, _FailingEmbedder())

    hits = asyncio.run(memory.search("pizza", user_id="u1", limit=1))

    assert len(hits) == 1
    assert hits[0].memory_type == "lore"


def test_cache_serves_stale_vectors_until_cleared(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, _KeywordEmbedder())
    _seed(memory)
    assert asyncio.run(memory.search("guitar", user_id="u1")) == []
    assert memory.cache_size("u1") == 3

    asyncio.run(memory.store_memory("Plays guitar in a band", "fact", user_id="u1"))
    assert asyncio.run(memory.search("guitar", user_id="u1")) == []

    memory.clear_cache()
    hits = asyncio.run(memory.search("guitar", user_id="u1"))
    assert [hit.content for hit in hits] == ["Plays guitar in a band"]


def test_store_memory_rejects_unknown_type_source_and_empty_text(tmp_path: Path) -> None:
    memory = SemanticMemory(_store(tmp_path), None)

    with pytest.raises(ValueError):
        asyncio.run(memory.store_memory("something", "dream"))
    with pytest.raises(ValueError):
        asyncio.run(memory.store_memory("something", "fact", source="rumour"))
    with pytest.raises(ValueError):
        asyncio.run(memory.store_memory("   ", "fact"))


def test_extract_candidates_finds_first_person_statements() -> None:
    found = extract_memory_candidates("I love hiking in the mountains. My dog ate my homework! ok")

    assert ("I love hiking in the mountains", "preference", 0.6) in found
    assert ("My dog ate my homework", "fact", 0.7) in found
    assert extract_memory_candidates("I love it") == []


def test_extracted_statements_are_attributed_to_the_speaker(tmp_path: Path) -> None:
    assert extract_memory_candidates("I love hiking in the mountains", speaker="Alice") == [
        ("Alice said: I love hiking in the mountains", "preference", 0.6)
    ]
    assert extract_memory_candidates("I love it", speaker="Alice") == []

    store = _store(tmp_path)
    memory = SemanticMemory(store, None)
    ids = asyncio.run(memory.extract_from_text("u1", "my cat knocked over the fern again", speaker="Bob"))

    assert len(ids) == 1
    row = asyncio.run(store.get_semantic_memory(ids[0]))
    assert row is not None
    assert row["content"] == "Bob said: my cat knocked over the fern again"
    assert row["user_id"] == "u1"


def test_extract_from_text_stores_auto_extracted_memories(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, _KeywordEmbedder())

    ids = asyncio.run(memory.extract_from_text("u1", "I just finished my first guitar lesson", source_id="m9"))

    assert len(ids) == 1
    row = asyncio.run(store.get_semantic_memory(ids[0]))
    assert row is not None
    assert row["memory_type"] == "event"
    assert row["source"] == "auto_extraction"
    assert row["source_id"] == "m9"
    assert row["embedding_id"] is not None

    disabled = SemanticMemory(store, None, auto_extract=False)
    assert asyncio.run(disabled.extract_from_text("u1", "I just finished my first guitar lesson")) == []


def test_memory_context_update_and_delete(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, _KeywordEmbedder())
    ids = _seed(memory)

    context = asyncio.run(memory.build_memory_context("u1", "pizza"))
    assert context.startswith("THINGS YOU REMEMBER")
    assert "- [preference] Loves pineapple pizza" in context
    assert asyncio.run(memory.build_memory_context("u3", "guitar")) == ""

    assert asyncio.run(memory.update_importance(ids["pizza"], 4.0)) is True
    assert asyncio.run(store.get_semantic_memory(ids["pizza"]))["importance"] == 1.0  # type: ignore[index]
    assert asyncio.run(memory.delete_memory(ids["pizza"])) is True
    assert asyncio.run(memory.delete_memory(ids["pizza"])) is False
    assert asyncio.run(store.get_semantic_memory(ids["pizza"])) is None


def test_log_interaction_appends_history(tmp_path: Path) -> None:
    store = _store(tmp_path)
    memory = SemanticMemory(store, None)

    asyncio.run(
        memory.log_interaction(
            user_id="u1",
            user_name="Alice",
            channel_id="c1",
            guild_id="g1",
            user_message="hi",
            bot_response="hello",
            sentiment=0.4,
        )
    )

    rows = asyncio.run(store.get_recent_interactions("u1"))
    assert [(row["user_message"], row["bot_response"], row["sentiment"]) for row in rows] == [("hi", "hello", 0.4)]
