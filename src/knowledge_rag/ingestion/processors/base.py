"""Shared contract of the per-source-kind processors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, Field

from knowledge_rag.errors import DocumentNotFoundError, InvalidSourceError
from knowledge_rag.records.models import Document, SourceKind

if TYPE_CHECKING:
    from knowledge_rag.context import EngineContext


class ProcessedRecord(BaseModel):
    """One ``(content, metadata)`` unit handed to the chunker."""

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SourceProcessor(ABC):
    """Materializes one kind of source and converts it to records.

    Subclasses implement :meth:`save_original_file` (fetch or verify the
    canonical source under ``sources/<kb>/``) and :meth:`processed_file`
    (turn it into :class:`ProcessedRecord` objects).
    """

    kind: ClassVar[SourceKind]
    #: Whether :meth:`save_original_file` must leave ``Document.filename`` set.
    requires_file: ClassVar[bool] = True

    def __init__(self, context: EngineContext) -> None:
        self.ctx = context

    # -- helpers --------------------------------------------------------------

    def payload(self, document: Document) -> Any:
        """Return the document's source payload, checking its kind."""
        if document.source.kind != self.kind.value:
            raise InvalidSourceError(f"document {document.id} is not a {self.kind.value} source")
        return document.source

    def source_path(self, document: Document, filename: str | None = None) -> Path:
        return self.ctx.source_dir(document.knowledge_base_id) / (filename or document.filename or "")

    def set_filename(self, document: Document, filename: str) -> Document:
        self.ctx.records.update(
            Document,
            {"filename": filename},
            id=document.id,
            knowledge_base_id=document.knowledge_base_id,
        )
        updated = self.ctx.records.find_one(Document, id=document.id, knowledge_base_id=document.knowledge_base_id)
        if updated is None:
            raise DocumentNotFoundError(document.id)
        return updated

    def base_metadata(self, document: Document, **data: Any) -> dict[str, Any]:
        return {"documentId": document.id, "data": {"kind": self.kind.value, **data}}

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def save_original_file(self, document: Document) -> Document:
        """Materialize the canonical source; return the refreshed document."""
        ...

    @abstractmethod
    async def processed_file(self, document: Document) -> list[ProcessedRecord]:
        """Convert the canonical source into records."""
        ...
