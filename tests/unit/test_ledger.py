"""Unit tests for the embedding-history ledger."""

from __future__ import annotations

from knowledge_rag.ingestion.ledger import EmbeddingLedger, content_hash
from knowledge_rag.records.models import EmbeddingHistoryEntry, EmbeddingStatus


def test_content_hash_is_md5():
    assert content_hash("abc") == "900150983cd24fb0d6963f7d28e17f72"


class TestEmbeddingLedger:
    def test_begin_then_succeed(self, records):
        ledger = EmbeddingLedger(records)
        digest = content_hash("hello")

        entry = ledger.begin("kb", "doc", digest)
        assert entry.status == EmbeddingStatus.UPLOADING
        assert not ledger.is_embedded("kb", "doc", digest)

        ledger.succeed(entry)
        assert ledger.is_embedded("kb", "doc", digest)
        assert ledger.find("kb", "doc", digest).end_at is not None

    def test_failed_entry_is_not_embedded(self, records):
        ledger = EmbeddingLedger(records)
        entry = ledger.begin("kb", "doc", "h1")

        ledger.fail(entry, "boom")

        stored = ledger.find("kb", "doc", "h1")
        assert stored.status == EmbeddingStatus.ERROR
        assert stored.error == "boom"
        assert not ledger.is_embedded("kb", "doc", "h1")

    def test_begin_resets_existing_entry(self, records):
        ledger = EmbeddingLedger(records)
        first = ledger.begin("kb", "doc", "h1")
        ledger.fail(first, "boom")

        again = ledger.begin("kb", "doc", "h1")

        assert again.id == first.id
        assert len(records.find_all(EmbeddingHistoryEntry)) == 1
        stored = ledger.find("kb", "doc", "h1")
        assert stored.status == EmbeddingStatus.UPLOADING
        assert stored.error is None

    def test_entries_are_scoped_per_document(self, records):
        ledger = EmbeddingLedger(records)
        ledger.succeed(ledger.begin("kb", "doc-a", "h1"))
        assert not ledger.is_embedded("kb", "doc-b", "h1")

    def test_clear(self, records):
        ledger = EmbeddingLedger(records)
        ledger.begin("kb", "doc", "h1")
        ledger.begin("kb", "doc", "h2")
        ledger.begin("kb", "other", "h1")

        assert ledger.clear("kb", "doc") == 2
        assert ledger.find("kb", "other", "h1") is not None
