"""Unit tests for rank fusion, query expansion and the hybrid retriever."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.documents import Document as ChunkDocument
from langchain_core.language_models import FakeListChatModel

from knowledge_rag.ingestion.pipeline import IngestionPipeline
from knowledge_rag.jobs import Job
from knowledge_rag.records.models import Document, KnowledgeBase, TextSource
from knowledge_rag.retrieval.fusion import reciprocal_rank_fusion, tokenize, unique_by_content
from knowledge_rag.retrieval.models import RetrievalResult
from knowledge_rag.retrieval.paraphrase import expand_query, parse_paraphrases
from knowledge_rag.retrieval.retriever import HybridRetriever


def _doc(text: str, **metadata) -> ChunkDocument:
    return ChunkDocument(page_content=text, metadata=metadata)


def _ingest(ctx, *bodies: str) -> tuple[KnowledgeBase, list[Document]]:
    kb = ctx.records.create(KnowledgeBase(name="kb"))
    docs = [ctx.records.create(Document(knowledge_base_id=kb.id, source=TextSource(body=b))) for b in bodies]

    async def scenario() -> None:
        pipeline = IngestionPipeline(ctx)
        for doc in docs:
            await pipeline.execute(Job(knowledge_base_id=kb.id, document_id=doc.id))
        await ctx.drain()

    asyncio.run(scenario())
    return kb, docs


# ──────────────────────────────────────────────────────────────────────
# Fusion
# ──────────────────────────────────────────────────────────────────────


def test_tokenize():
    assert tokenize("Hello, World! it's 2024") == ["hello", "world", "it", "s", "2024"]


class TestReciprocalRankFusion:
    def test_consistency_bonus_for_repeated_hits(self):
        a, b = _doc("alpha"), _doc("beta")

        fused = reciprocal_rank_fusion([[a, b], [b]], k=60, consistency_bonus=0.1)

        assert [d.page_content for d, _ in fused] == ["beta", "alpha"]
        scores = dict((d.page_content, s) for d, s in fused)
        assert scores["alpha"] == pytest.approx(1 / 61)
        assert scores["beta"] == pytest.approx((1 / 62 + 1 / 61) * 1.2)

    def test_no_bonus_for_single_list(self):
        fused = reciprocal_rank_fusion([[_doc("alpha")]], k=60, consistency_bonus=0.5)
        assert fused[0][1] == pytest.approx(1 / 61)

    def test_relevance_score_weights_contribution(self):
        fused = reciprocal_rank_fusion([[_doc("alpha", relevanceScore=0.5)]], k=60)
        assert fused[0][1] == pytest.approx(0.5 / 61)

    def test_wrapped_and_plain_text_fuse_together(self):
        wrapped = _doc(json.dumps({"content": "alpha", "documentId": "d1"}), documentId="d1")
        fused = reciprocal_rank_fusion([[wrapped], [_doc("alpha", documentId="d1")]], k=60, consistency_bonus=0.1)

        assert len(fused) == 1
        assert fused[0][0] is wrapped

    def test_equal_text_in_other_documents_is_not_summed(self):
        top = _doc("unique top passage", documentId="d0")
        fillers = [_doc(f"filler {index}", documentId="d0") for index in range(3)]
        shared_a = _doc("shared paragraph", documentId="d1")
        shared_b = _doc("shared paragraph", documentId="d2")

        fused = reciprocal_rank_fusion([[top, *fillers, shared_a, shared_b]], k=60)
        assert len(fused) == 6

        ranked = unique_by_content(fused)
        assert [d.page_content for d, _ in ranked[:2]] == ["unique top passage", "filler 0"]
        scores = dict((d.page_content, s) for d, s in ranked)
        assert scores["unique top passage"] == pytest.approx(1 / 61)
        assert scores["shared paragraph"] == pytest.approx(1 / 65)
        assert ranked[-1][0] is shared_a

    def test_chunk_ids_keep_equal_texts_apart(self):
        first = ChunkDocument(id="s1", page_content="shared paragraph")
        second = ChunkDocument(id="s2", page_content="shared paragraph")

        fused = reciprocal_rank_fusion([[_doc("top"), first, second]], k=60)

        assert [s for _, s in fused] == pytest.approx([1 / 61, 1 / 62, 1 / 63])

    def test_repeat_within_one_list_counts_once(self):
        again = _doc("alpha")
        fused = reciprocal_rank_fusion([[again, _doc("beta"), again]], k=60, consistency_bonus=0.1)

        assert dict((d.page_content, s) for d, s in fused)["alpha"] == pytest.approx(1 / 61)

    def test_top_everywhere_beats_last_everywhere(self):
        top, middle, last = _doc("top"), _doc("middle"), _doc("last")

        fused = reciprocal_rank_fusion([[top, middle, last], [top, last], [top, middle, last]])

        scores = dict((d.page_content, s) for d, s in fused)
        assert scores["top"] > scores["last"]
        assert fused[0][0] is top

    def test_empty(self):
        assert reciprocal_rank_fusion([]) == []


def test_unique_by_content_keeps_best():
    low, high = _doc("alpha", rank="low"), _doc(json.dumps({"content": "alpha"}), rank="high")

    result = unique_by_content([(low, 0.1), (_doc("beta"), 0.2), (high, 0.3)])

    assert [(d.metadata.get("rank"), s) for d, s in result] == [("high", 0.3), (None, 0.2)]


# ──────────────────────────────────────────────────────────────────────
# Query expansion
# ──────────────────────────────────────────────────────────────────────


class TestParaphrases:
    def test_parse_strips_markers_and_duplicates(self):
        reply = '1. "Reset my password"\n- change password\n\n* How do I reset my password\n2) change password'
        assert parse_paraphrases(reply, "How do I reset my password", 3) == [
            "Reset my password",
            "change password",
        ]

    def test_parse_respects_count(self):
        assert parse_paraphrases("a\nb\nc", "q", 2) == ["a", "b"]

    def test_expand_query(self):
        llm = FakeListChatModel(responses=["1. reset password\n2. change password\n3. recover account"])
        assert asyncio.run(expand_query(llm, "How do I reset my password?", 3)) == [
            "reset password",
            "change password",
            "recover account",
        ]

    def test_expand_query_failure_yields_nothing(self, caplog):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("llm down"))

        assert asyncio.run(expand_query(llm, "query", 3)) == []
        assert "Query expansion failed" in caplog.text

    def test_zero_count_skips_model(self):
        llm = MagicMock()
        assert asyncio.run(expand_query(llm, "query", 0)) == []
        llm.ainvoke.assert_not_called()


# ──────────────────────────────────────────────────────────────────────
# HybridRetriever
# ──────────────────────────────────────────────────────────────────────


class TestHybridRetriever:
    def test_empty_store(self, ctx):
        assert asyncio.run(HybridRetriever(ctx, "empty-kb").search("hello")) == []

    def test_blank_query(self, ctx):
        kb, _ = _ingest(ctx, "Hello world")
        assert asyncio.run(HybridRetriever(ctx, kb.id).search("   ")) == []

    def test_single_document(self, ctx):
        kb, (doc,) = _ingest(ctx, "Hello world")

        results = asyncio.run(HybridRetriever(ctx, kb.id).search("hello"))

        assert len(results) == 1
        result = results[0]
        assert result.content == "Hello world"
        assert result.document_id == doc.id
        assert result.score == pytest.approx(1 / 61)
        assert result.metadata["relevanceScore"] == result.score
        assert result.to_dict() == {"content": "Hello world", "metadata": result.metadata}

    def test_results_are_bounded_and_sorted(self, ctx):
        kb, _ = _ingest(ctx, "Hello world", "Goodbye moon", "Hello again, world", "Unrelated text")

        results = asyncio.run(HybridRetriever(ctx, kb.id, n=2).search("hello world"))

        assert len(results) == 2
        assert len({r.content for r in results}) == 2
        assert results[0].score >= results[1].score

    def test_identical_text_from_two_documents_collapses(self, ctx):
        kb, _ = _ingest(ctx, "Hello world", "Hello world")

        results = asyncio.run(HybridRetriever(ctx, kb.id).search("hello"))

        assert [r.content for r in results] == ["Hello world"]

    def test_query_expansion(self, make_context):
        llm = FakeListChatModel(responses=["1. greetings planet\n2. hi earth"])
        ctx = make_context(llm=llm)
        kb, _ = _ingest(ctx, "Hello world")

        results = asyncio.run(HybridRetriever(ctx, kb.id, expand_queries=True).search("hello"))

        # The only chunk tops all three variant lists.
        assert results[0].score == pytest.approx(3 / 61 * 1.3)

    def test_failed_expansion_falls_back_to_query(self, make_context):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("llm down"))
        ctx = make_context(llm=llm)
        kb, _ = _ingest(ctx, "Hello world")

        results = asyncio.run(HybridRetriever(ctx, kb.id, expand_queries=True).search("hello"))

        assert [r.content for r in results] == ["Hello world"]
        assert results[0].score == pytest.approx(1 / 61)

    def test_full_text_hits_are_fused(self, make_context):
        search = MagicMock()
        search.can_use = True
        ctx = make_context(search_client=search)
        kb, (doc,) = _ingest(ctx, "Hello world")
        search.search.return_value = [
            {"pageContent": "Hello world", "metadata": {"documentId": doc.id}, "_rankingScore": 0.9},
        ]

        results = asyncio.run(HybridRetriever(ctx, kb.id).search("hello"))

        search.search.assert_called_once_with(kb.id, "hello", 1)
        assert len(results) == 1
        assert results[0].score == pytest.approx((1 + 0.9) / 61 * 1.2)


def test_retrieval_result_defaults():
    result = RetrievalResult(content="x")
    assert result.document_id is None
    assert result.to_dict() == {"content": "x", "metadata": {}}
