"""
Source processors — one per document source kind.

Public surface::

    from knowledge_rag.ingestion.processors import get_processor

    processor = get_processor(document.kind, context)
    document = await processor.save_original_file(document)
    records = await processor.processed_file(document)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from knowledge_rag.ingestion.processors.base import ProcessedRecord, SourceProcessor
from knowledge_rag.ingestion.processors.discussion import DiscussionProcessor
from knowledge_rag.ingestion.processors.file import FileProcessor
from knowledge_rag.ingestion.processors.text import TextProcessor
from knowledge_rag.ingestion.processors.url import UrlProcessor
from knowledge_rag.records.models import SourceKind

if TYPE_CHECKING:
    from knowledge_rag.context import EngineContext

PROCESSORS: dict[SourceKind, type[SourceProcessor]] = {
    SourceKind.FILE: FileProcessor,
    SourceKind.TEXT: TextProcessor,
    SourceKind.URL: UrlProcessor,
    SourceKind.DISCUSSION_THREAD: DiscussionProcessor,
}


def get_processor(kind: SourceKind | str, context: EngineContext) -> SourceProcessor:
    """Return the processor for *kind* bound to *context*."""
    return PROCESSORS[SourceKind(kind)](context)


__all__ = [
    "DiscussionProcessor",
    "FileProcessor",
    "PROCESSORS",
    "ProcessedRecord",
    "SourceProcessor",
    "TextProcessor",
    "UrlProcessor",
    "get_processor",
]
