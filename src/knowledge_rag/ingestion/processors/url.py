"""Crawled-page processor."""

from __future__ import annotations

import asyncio
import logging

from knowledge_rag.ingestion.crawl import crawl
from knowledge_rag.ingestion.processors.base import ProcessedRecord, SourceProcessor
from knowledge_rag.ingestion.text import extract_title_markdown, normalise_text
from knowledge_rag.records.models import Document, SourceKind, UrlSource

logger = logging.getLogger(__name__)


class UrlProcessor(SourceProcessor):
    kind = SourceKind.URL

    async def save_original_file(self, document: Document) -> Document:
        source: UrlSource = self.payload(document)
        text = await asyncio.to_thread(crawl, source.url, source.provider, self.ctx.settings)

        filename = f"{document.id}.md"
        path = self.source_path(document, filename)
        await asyncio.to_thread(path.write_text, text, encoding="utf-8")
        logger.info("Saved crawl of %s to %s", source.url, path)
        return self.set_filename(document, filename)

    async def processed_file(self, document: Document) -> list[ProcessedRecord]:
        source: UrlSource = self.payload(document)
        raw = await asyncio.to_thread(self.source_path(document).read_text, encoding="utf-8")
        text = normalise_text(raw)

        metadata = self.base_metadata(document, url=source.url, provider=source.provider)
        metadata["title"] = extract_title_markdown(text) or document.name or source.url
        return [ProcessedRecord(content=text, metadata=metadata)]
