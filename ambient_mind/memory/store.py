from __future__ import annotations

from .storage.embeddings import MemoryEmbeddingsMixin
from .storage.memories import MemorySemanticMixin
from .storage.messages import MemoryMessagesMixin
from .storage.personality import MemoryPersonalityMixin
from .storage.queue import MemoryQueueMixin
from .storage.relationships import MemoryRelationshipsMixin
from .storage.schema import MemorySchemaMixin
from .storage.summaries import MemorySummariesMixin
from .storage.topics import MemoryTopicsMixin


class MemoryStore(
    MemorySchemaMixin,
    MemoryMessagesMixin,
    MemoryQueueMixin,
    MemoryEmbeddingsMixin,
    MemorySemanticMixin,
    MemorySummariesMixin,
    MemoryTopicsMixin,
    MemoryPersonalityMixin,
    MemoryRelationshipsMixin,
):
    """Durable awareness store: messages, embedding queue, vectors, memories and affective state."""
