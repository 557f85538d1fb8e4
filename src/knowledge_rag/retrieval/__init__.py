"""
Retrieval — hybrid lexical + vector search over one knowledge base.

Public surface
--------------
- :class:`HybridRetriever` — main entry point; returns fused, deduplicated results.
- :class:`RetrievalResult` — result model.
- :func:`reciprocal_rank_fusion`, :func:`unique_by_content` — ranking helpers.
- :func:`expand_query` — LLM paraphrase expansion.
"""

from typing import Any

from knowledge_rag.retrieval.fusion import reciprocal_rank_fusion, tokenize, unique_by_content
from knowledge_rag.retrieval.models import RetrievalResult
from knowledge_rag.retrieval.paraphrase import expand_query

__all__ = [
    "HybridRetriever",
    "RetrievalResult",
    "expand_query",
    "reciprocal_rank_fusion",
    "tokenize",
    "unique_by_content",
]


def __getattr__(name: str) -> Any:
    """Lazy-import HybridRetriever to avoid pulling in langchain retrievers at import time."""
    if name == "HybridRetriever":
        from knowledge_rag.retrieval.retriever import HybridRetriever

        return HybridRetriever
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
