"""Embedding-history ledger.

One entry per ``(knowledge base, document, content hash)`` records whether
that exact record content has already been embedded, so unchanged records
are skipped when a document is processed again.
"""

from __future__ import annotations

import hashlib
import logging

from knowledge_rag.records.base import RecordStore
from knowledge_rag.records.models import EmbeddingHistoryEntry, EmbeddingStatus, utcnow

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    """Return the md5 hex digest of *text*."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class EmbeddingLedger:
    """Ledger operations over a :class:`RecordStore`."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def find(self, knowledge_base_id: str, document_id: str, digest: str) -> EmbeddingHistoryEntry | None:
        return self._records.find_one(
            EmbeddingHistoryEntry,
            knowledge_base_id=knowledge_base_id,
            document_id=document_id,
            content_hash=digest,
        )

    def is_embedded(self, knowledge_base_id: str, document_id: str, digest: str) -> bool:
        entry = self.find(knowledge_base_id, document_id, digest)
        return entry is not None and entry.status == EmbeddingStatus.SUCCESS

    def begin(self, knowledge_base_id: str, document_id: str, digest: str) -> EmbeddingHistoryEntry:
        """Create or reset the entry for *digest* in the ``uploading`` state."""
        values = {
            "status": EmbeddingStatus.UPLOADING,
            "start_at": utcnow(),
            "end_at": None,
            "error": None,
        }
        existing = self.find(knowledge_base_id, document_id, digest)
        if existing is not None:
            self._records.update(EmbeddingHistoryEntry, values, id=existing.id)
            return existing.model_copy(update=values)

        entry = EmbeddingHistoryEntry(
            knowledge_base_id=knowledge_base_id,
            document_id=document_id,
            content_hash=digest,
            **values,
        )
        return self._records.create(entry)

    def succeed(self, entry: EmbeddingHistoryEntry) -> None:
        self._records.update(
            EmbeddingHistoryEntry,
            {"status": EmbeddingStatus.SUCCESS, "end_at": utcnow(), "error": None},
            id=entry.id,
        )

    def fail(self, entry: EmbeddingHistoryEntry, message: str) -> None:
        self._records.update(
            EmbeddingHistoryEntry,
            {"status": EmbeddingStatus.ERROR, "end_at": utcnow(), "error": message},
            id=entry.id,
        )

    def clear(self, knowledge_base_id: str, document_id: str) -> int:
        """Forget every entry of a document; return how many were deleted."""
        count = self._records.destroy(
            EmbeddingHistoryEntry,
            knowledge_base_id=knowledge_base_id,
            document_id=document_id,
        )
        if count:
            logger.debug("Cleared %d ledger entries for document %s", count, document_id)
        return count
