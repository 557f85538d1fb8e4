"""Free-text processor."""

from __future__ import annotations

from knowledge_rag.ingestion.processors.base import ProcessedRecord, SourceProcessor
from knowledge_rag.records.models import Document, SourceKind, TextSource


class TextProcessor(SourceProcessor):
    """The body lives in the record itself; there is nothing to fetch."""

    kind = SourceKind.TEXT
    requires_file = False

    async def save_original_file(self, document: Document) -> Document:
        self.payload(document)
        return document

    async def processed_file(self, document: Document) -> list[ProcessedRecord]:
        source: TextSource = self.payload(document)
        metadata = self.base_metadata(document, title=source.title or document.name)
        return [ProcessedRecord(content=source.body, metadata=metadata)]
