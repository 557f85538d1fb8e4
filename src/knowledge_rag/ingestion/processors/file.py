"""Uploaded-file processor."""

from __future__ import annotations

import asyncio
import logging

from knowledge_rag.errors import InvalidSourceError
from knowledge_rag.ingestion.loader import load_file
from knowledge_rag.ingestion.processors.base import ProcessedRecord, SourceProcessor
from knowledge_rag.records.models import Document, FileSource, SourceKind

logger = logging.getLogger(__name__)


class FileProcessor(SourceProcessor):
    kind = SourceKind.FILE

    async def save_original_file(self, document: Document) -> Document:
        source: FileSource = self.payload(document)
        path = self.source_path(document, source.filename)
        if not path.is_file():
            raise InvalidSourceError(f"uploaded file {source.filename!r} of document {document.id} not found")
        if document.filename != source.filename:
            document = self.set_filename(document, source.filename)
        return document

    async def processed_file(self, document: Document) -> list[ProcessedRecord]:
        source: FileSource = self.payload(document)
        path = self.source_path(document, source.filename)
        text = await asyncio.to_thread(load_file, path)
        logger.debug("Extracted %d chars from %s", len(text), path.name)

        metadata = self.base_metadata(
            document,
            name=document.name or source.filename,
            filename=source.filename,
            size=path.stat().st_size,
        )
        return [ProcessedRecord(content=text, metadata=metadata)]
