from .embedding_queue import EmbeddingQueueProcessor
from .ingestion import MessageIngestor
from .retrieval import ServerMemoryRetriever
from .semantic import SemanticMemory
from .store import MemoryStore
from .summarizer import ChannelSummarizer, MaintenanceScheduler

__all__ = [
    "ChannelSummarizer",
    "EmbeddingQueueProcessor",
    "MaintenanceScheduler",
    "MemoryStore",
    "MessageIngestor",
    "SemanticMemory",
    "ServerMemoryRetriever",
]
