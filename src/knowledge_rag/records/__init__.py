"""
Records — models and CRUD storage for knowledge bases, documents,
segments and embedding-history entries.
"""

from knowledge_rag.records.base import RecordStore
from knowledge_rag.records.memory import InMemoryRecordStore
from knowledge_rag.records.models import (
    DiscussionSource,
    Document,
    EmbeddingHistoryEntry,
    EmbeddingStatus,
    FileSource,
    KnowledgeBase,
    Segment,
    SourceKind,
    TextSource,
    UrlSource,
)

__all__ = [
    "DiscussionSource",
    "Document",
    "EmbeddingHistoryEntry",
    "EmbeddingStatus",
    "FileSource",
    "InMemoryRecordStore",
    "KnowledgeBase",
    "RecordStore",
    "Segment",
    "SourceKind",
    "TextSource",
    "UrlSource",
]
