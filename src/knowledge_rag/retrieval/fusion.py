"""Rank fusion and content deduplication."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Sequence

from langchain_core.documents import Document

from knowledge_rag.ingestion.chunker import extract_text

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens, used as the BM25 preprocessing function."""
    return _WORD_RE.findall(text.lower())


def content_key(doc: Document) -> str:
    """md5 of a chunk's plain text; equal texts share a key."""
    return hashlib.md5(extract_text(doc.page_content).encode("utf-8")).hexdigest()


def chunk_key(doc: Document) -> str:
    """Identity of one stored chunk across result lists.

    Hits carrying a ``documentId`` are keyed by document and text, so a
    full-text hit fuses with the vector hit of the same chunk; otherwise
    the chunk id is used, falling back to the raw page content.
    """
    document_id = doc.metadata.get("documentId")
    if document_id:
        return f"{document_id}:{content_key(doc)}"
    if doc.id:
        return f"id:{doc.id}"
    return f"raw:{doc.page_content}"


def reciprocal_rank_fusion(
    result_lists: Sequence[Sequence[Document]],
    *,
    k: int = 60,
    consistency_bonus: float = 0.1,
) -> list[tuple[Document, float]]:
    """Fuse ranked lists into one scored list, best first.

    Each occurrence adds ``relevance / (k + rank + 1)`` where ``relevance``
    is the document's ``relevanceScore`` metadata (``1.0`` when absent).
    A chunk found by more than one list is then multiplied by
    ``1 + consistency_bonus * <number of lists>``.  Distinct chunks with
    equal text stay separate here; :func:`unique_by_content` collapses them.
    Within one list only the best-ranked occurrence of a chunk counts.
    """
    scores: dict[str, float] = {}
    docs: dict[str, Document] = {}
    found_in: dict[str, set[int]] = {}

    for list_index, ranked in enumerate(result_lists):
        for rank, doc in enumerate(ranked):
            key = chunk_key(doc)
            if list_index in found_in.get(key, ()):
                continue
            relevance = float(doc.metadata.get("relevanceScore", 1.0))
            scores[key] = scores.get(key, 0.0) + relevance * (1.0 / (k + rank + 1))
            docs.setdefault(key, doc)
            found_in.setdefault(key, set()).add(list_index)

    fused: list[tuple[Document, float]] = []
    for key, score in scores.items():
        count = len(found_in[key])
        if count > 1:
            score *= 1 + consistency_bonus * count
        fused.append((docs[key], score))

    fused.sort(key=lambda item: item[1], reverse=True)
    return fused


def unique_by_content(scored: Iterable[tuple[Document, float]]) -> list[tuple[Document, float]]:
    """Keep the highest-scored occurrence of every distinct chunk text."""
    best: dict[str, tuple[Document, float]] = {}
    for doc, score in scored:
        key = content_key(doc)
        current = best.get(key)
        if current is None or score > current[1]:
            best[key] = (doc, score)
    return sorted(best.values(), key=lambda item: item[1], reverse=True)
