"""Text chunking strategies.

Every chunk carries a copy of its record's metadata.  When that metadata
is non-empty the chunk body itself is re-serialized as
``{"content": <chunk>, **metadata}`` so the metadata travels with the
text through the vector store and the full-text index;
:func:`extract_text` undoes the wrapping.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.documents import Document
from langchain_text_splitters import MarkdownTextSplitter, RecursiveCharacterTextSplitter
from pydantic import BaseModel, Field, model_validator

from knowledge_rag.config import Settings, settings
from knowledge_rag.ingestion.discussion import discussion_to_markdown
from knowledge_rag.records.models import SourceKind

logger = logging.getLogger(__name__)


class SplitterConfig(BaseModel):
    """Separator hierarchy and size bounds for the text splitters."""

    chunk_size: int = 1024
    chunk_overlap: int = 100
    separators: list[str] = Field(default_factory=lambda: ["\n\n", "\n", " ", ""])

    @model_validator(mode="after")
    def _check_bounds(self) -> SplitterConfig:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> SplitterConfig:
        cfg = cfg or settings
        return cls(
            chunk_size=cfg.chunk_size,
            chunk_overlap=cfg.chunk_overlap,
            separators=list(cfg.chunk_separators),
        )


def _recursive_splitter(config: SplitterConfig) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
        length_function=len,
        separators=config.separators,
    )


def _split_discussion(content: str, metadata: dict[str, Any], config: SplitterConfig) -> list[str]:
    try:
        post = json.loads(content)
        markdown = discussion_to_markdown(post, metadata.get("link") or "")
        if not markdown:
            raise ValueError("discussion record rendered to empty markdown")
    except (TypeError, ValueError, KeyError, AttributeError) as exc:
        logger.warning("Falling back to recursive splitter for discussion record: %s", exc)
        return _recursive_splitter(config).split_text(content)

    splitter = MarkdownTextSplitter(chunk_size=config.chunk_size, chunk_overlap=config.chunk_overlap)
    return splitter.split_text(markdown)


def wrap_chunk(chunk: str, metadata: dict[str, Any] | None) -> Document:
    """Pair *chunk* with a copy of *metadata*, embedding it in the body."""
    meta = dict(metadata or {})
    if meta:
        body = json.dumps({"content": chunk, **meta}, ensure_ascii=False, default=str)
    else:
        body = chunk
    return Document(page_content=body, metadata=meta)


def split_content(
    content: str,
    metadata: dict[str, Any] | None = None,
    kind: SourceKind | str = SourceKind.TEXT,
    config: SplitterConfig | None = None,
) -> list[Document]:
    """Split one processed record into chunk documents ready for embedding.

    Parameters
    ----------
    content:
        Record text; discussion records hold a JSON-encoded post.
    metadata:
        Record metadata stamped onto every chunk.
    kind:
        Source kind of the owning document; ``discussionThread`` records
        are rendered to markdown and split with a markdown-aware splitter.
    config:
        Splitter bounds; defaults to the configured settings.

    Returns
    -------
    list[Document]
        One document per chunk, in source order.

    Raises
    ------
    ValueError
        If *content* is not a non-empty string.
    """
    if not isinstance(content, str) or not content.strip():
        raise ValueError(f"Invalid content: {type(content).__name__}")

    config = config or SplitterConfig.from_settings()
    metadata = dict(metadata or {})

    if SourceKind(kind) is SourceKind.DISCUSSION_THREAD:
        chunks = _split_discussion(content, metadata, config)
    else:
        chunks = _recursive_splitter(config).split_text(content)

    return [wrap_chunk(chunk, metadata) for chunk in chunks if chunk.strip()]


def extract_text(page_content: str) -> str:
    """Return the plain text of a stored chunk body.

    Unwraps the ``{"content": ...}`` envelope added by :func:`wrap_chunk`,
    tolerating one further nested envelope (discussion records whose raw
    JSON fitted in a single chunk).
    """
    text = page_content or ""
    for _ in range(2):
        try:
            parsed = json.loads(text)
        except (TypeError, ValueError):
            break
        if not isinstance(parsed, dict) or "content" not in parsed:
            break
        inner = parsed["content"]
        if not isinstance(inner, str):
            break
        text = inner
    return text.strip()
