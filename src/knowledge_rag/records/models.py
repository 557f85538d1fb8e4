"""Record models for knowledge bases, documents, segments and the ledger.

The relational storage of these records lives outside this package; the
engine only talks to it through :class:`~knowledge_rag.records.base.RecordStore`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field


def _new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingStatus(str, Enum):
    """Lifecycle of a document (or ledger entry) through the pipeline."""

    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class SourceKind(str, Enum):
    FILE = "file"
    TEXT = "text"
    URL = "url"
    DISCUSSION_THREAD = "discussionThread"


# ── Source payloads (closed tagged union) ─────────────────────────────


class FileSource(BaseModel):
    """An already-uploaded file stored under the knowledge base's sources dir."""

    kind: Literal["file"] = "file"
    filename: str
    mimetype: str | None = None


class TextSource(BaseModel):
    """Free text; the only payload that may be replaced in place."""

    kind: Literal["text"] = "text"
    title: str = ""
    body: str


class UrlSource(BaseModel):
    """A page fetched through a crawl provider.

    Attributes
    ----------
    url:
        Target page.
    provider:
        ``"jina"`` (reader proxy returning readable text) or
        ``"firecrawl"`` (scraper returning markdown).
    """

    kind: Literal["url"] = "url"
    url: str
    provider: Literal["jina", "firecrawl"] = "jina"


class DiscussionSource(BaseModel):
    """A selection of discussion threads.

    Attributes
    ----------
    mode:
        ``"single"`` — one thread identified by ``id``;
        ``"collection-of-threads"`` — every thread of the board ``id``;
        ``"thread-type"`` — every thread whose type is ``id``.
    thread_type:
        Thread type used when listing a board (``discussion``, ``blog``,
        ``doc``).
    """

    kind: Literal["discussionThread"] = "discussionThread"
    mode: Literal["single", "collection-of-threads", "thread-type"]
    id: str
    title: str = ""
    thread_type: Literal["discussion", "blog", "doc"] = "discussion"


SourcePayload = Annotated[
    Union[FileSource, TextSource, UrlSource, DiscussionSource],
    Field(discriminator="kind"),
]


# ── Records ───────────────────────────────────────────────────────────


class KnowledgeBase(BaseModel):
    """Logical collection of documents.

    ``resource_path`` is set for read-only knowledge bases that ship as a
    bundled resource directory instead of living in mutable storage.
    """

    id: str = Field(default_factory=_new_id)
    name: str = ""
    description: str = ""
    resource_path: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Document(BaseModel):
    """A source unit of a knowledge base.

    ``embedding_status`` holds an :class:`EmbeddingStatus` value, or an
    ``"i/total"`` progress counter while a multi-record document is being
    embedded.
    """

    id: str = Field(default_factory=_new_id)
    knowledge_base_id: str
    name: str = ""
    source: SourcePayload
    filename: str | None = None
    size: int = 0
    embedding_status: str = EmbeddingStatus.IDLE.value
    embedding_start_at: datetime | None = None
    embedding_end_at: datetime | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def kind(self) -> SourceKind:
        return SourceKind(self.source.kind)


class Segment(BaseModel):
    """One chunk of a document; ``id`` is the chunk's vector-store id."""

    id: str = Field(default_factory=_new_id)
    document_id: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EmbeddingHistoryEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    knowledge_base_id: str
    document_id: str
    content_hash: str
    status: EmbeddingStatus = EmbeddingStatus.UPLOADING
    start_at: datetime | None = None
    end_at: datetime | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


def to_event_payload(document: Document) -> dict[str, Any]:
    """Serialize *document* for progress subscribers."""
    return document.model_dump(mode="json")
