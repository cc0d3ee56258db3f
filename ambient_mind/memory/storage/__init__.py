from .embeddings import MemoryEmbeddingsMixin
from .memories import MemorySemanticMixin
from .messages import MemoryMessagesMixin
from .personality import MemoryPersonalityMixin
from .queue import MemoryQueueMixin
from .relationships import MemoryRelationshipsMixin
from .schema import MemorySchemaMixin
from .summaries import MemorySummariesMixin
from .topics import MemoryTopicsMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryMessagesMixin",
    "MemoryQueueMixin",
    "MemoryEmbeddingsMixin",
    "MemorySemanticMixin",
    "MemorySummariesMixin",
    "MemoryTopicsMixin",
    "MemoryPersonalityMixin",
    "MemoryRelationshipsMixin",
]
