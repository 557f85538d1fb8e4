"""Unit tests for the vector-store backends and the store cache."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from langchain_core.documents import Document

from knowledge_rag.vectorstore import VectorStoreCache, get_backend
from knowledge_rag.vectorstore.faiss_store import FaissVectorStore


def _docs(texts: list[str]) -> list[Document]:
    return [Document(page_content=t, metadata={"documentId": "d1", "data": {"kind": "text"}}) for t in texts]


def _fill(store, embeddings, texts: list[str], ids: list[str]) -> None:
    store.add_vectors(embeddings.embed_documents(texts), _docs(texts), ids)
    store.save()


class TestGetBackend:
    def test_faiss(self):
        assert get_backend("faiss") is FaissVectorStore

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown vector store backend"):
            get_backend("pinecone")


class TestFaissVectorStore:
    def test_empty_store(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        assert len(store) == 0
        assert store.get_mapping() == {}
        assert store.similarity_search("anything") == []
        assert store.list_documents() == []
        assert store.delete(["x"]) == 0
        assert not FaissVectorStore.is_initialized(tmp_path / "kb")

    def test_save_and_reload(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        _fill(store, embeddings, ["alpha", "beta"], ["id-a", "id-b"])
        assert FaissVectorStore.is_initialized(tmp_path / "kb")

        reloaded = FaissVectorStore.load(tmp_path / "kb", embeddings)

        assert set(reloaded.get_mapping()) == {"id-a", "id-b"}
        doc, score = reloaded.similarity_search_with_score("alpha", k=1)[0]
        assert doc.page_content == "alpha"
        assert doc.metadata["documentId"] == "d1"
        assert score == pytest.approx(1.0)

    def test_scores_are_bounded(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        _fill(store, embeddings, ["alpha", "beta", "gamma"], ["a", "b", "c"])

        hits = store.similarity_search_with_score("delta", k=10)

        assert len(hits) == 3
        assert all(0 < score <= 1 for _, score in hits)
        assert [s for _, s in hits] == sorted((s for _, s in hits), reverse=True)

    def test_delete_ignores_unknown_ids(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        _fill(store, embeddings, ["alpha", "beta"], ["id-a", "id-b"])

        assert store.delete(["id-a", "missing"]) == 1
        assert set(store.get_mapping()) == {"id-b"}
        assert [d.page_content for d in store.list_documents()] == ["beta"]

    def test_length_mismatch(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        with pytest.raises(ValueError, match="same length"):
            store.add_vectors(embeddings.embed_documents(["a"]), _docs(["a"]), ["1", "2"])

    def test_as_retriever(self, tmp_path: Path, embeddings):
        store = FaissVectorStore.load(tmp_path / "kb", embeddings)
        _fill(store, embeddings, ["alpha", "beta"], ["id-a", "id-b"])

        docs = store.as_retriever(k=1).invoke("beta")

        assert [d.page_content for d in docs] == ["beta"]


class TestChromaVectorStore:
    def test_round_trip(self, tmp_path: Path, embeddings):
        pytest.importorskip("chromadb")
        from knowledge_rag.vectorstore.chroma_store import ChromaVectorStore

        store = ChromaVectorStore.load(tmp_path / "kb", embeddings)
        _fill(store, embeddings, ["alpha", "beta"], ["id-a", "id-b"])

        assert ChromaVectorStore.is_initialized(tmp_path / "kb")
        assert set(store.get_mapping()) == {"id-a", "id-b"}

        doc, score = store.similarity_search_with_score("alpha", k=1)[0]
        assert doc.page_content == "alpha"
        assert doc.metadata == {"documentId": "d1", "data": {"kind": "text"}}
        assert 0 < score <= 1

        assert store.delete(["id-b", "missing"]) == 1
        assert [d.page_content for d in store.list_documents()] == ["alpha"]


class TestVectorStoreCache:
    def test_concurrent_loads_share_one_construction(self, tmp_path: Path):
        calls: list[Path] = []

        def factory(path: Path):
            calls.append(path)
            time.sleep(0.05)
            return MagicMock(name="store")

        cache = VectorStoreCache(factory)

        async def scenario():
            return await asyncio.gather(cache.load(tmp_path / "kb"), cache.load(tmp_path / "kb"))

        first, second = asyncio.run(scenario())

        assert first is second
        assert len(calls) == 1
        assert (tmp_path / "kb") in cache

    def test_evict_forces_reopen(self, tmp_path: Path):
        factory = MagicMock(side_effect=lambda path: MagicMock(name=str(path)))
        cache = VectorStoreCache(factory)

        first = asyncio.run(cache.load(tmp_path / "kb"))
        assert cache.evict(tmp_path / "kb") is True
        assert cache.evict(tmp_path / "kb") is False
        second = asyncio.run(cache.load(tmp_path / "kb"))

        assert first is not second
        assert factory.call_count == 2

    def test_failed_construction_is_not_cached(self, tmp_path: Path):
        store = MagicMock(name="store")
        factory = MagicMock(side_effect=[RuntimeError("disk"), store])
        cache = VectorStoreCache(factory)

        with pytest.raises(RuntimeError, match="disk"):
            asyncio.run(cache.load(tmp_path / "kb"))

        assert asyncio.run(cache.load(tmp_path / "kb")) is store
