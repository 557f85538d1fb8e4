"""
knowledge_rag — per-knowledge-base ingestion and hybrid retrieval.

Documents (uploaded files, free text, crawled pages, discussion threads)
are queued as ingestion jobs, converted into embedded chunks stored in a
per-knowledge-base vector index, and searched with a BM25 + vector
ensemble fused by reciprocal rank.

Public surface
--------------
- :class:`EngineContext` — owns the record store, vector-store cache,
  job queue and background tasks.
- :class:`IngestionPipeline` — per-document state machine.
- :class:`HybridRetriever` — fused lexical + vector search.
"""

from typing import Any

from knowledge_rag.context import EngineContext
from knowledge_rag.ingestion.pipeline import IngestionPipeline
from knowledge_rag.jobs import Job, JobQueue

__all__ = [
    "EngineContext",
    "HybridRetriever",
    "IngestionPipeline",
    "Job",
    "JobQueue",
]


def __getattr__(name: str) -> Any:
    if name == "HybridRetriever":
        from knowledge_rag.retrieval.retriever import HybridRetriever

        return HybridRetriever
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
