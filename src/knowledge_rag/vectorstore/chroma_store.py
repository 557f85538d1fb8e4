"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import chromadb
from langchain_core.documents import Document

from knowledge_rag.errors import VectorStoreError
from knowledge_rag.vectorstore.base import VectorStoreBase

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

_METADATA_KEY = "metadata_json"


def _to_chroma_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma only stores flat scalars; keep those and a JSON copy of the rest."""
    flat = {
        key: value
        for key, value in metadata.items()
        if isinstance(value, (str, int, float, bool)) and key != _METADATA_KEY
    }
    flat[_METADATA_KEY] = json.dumps(metadata, default=str)
    return flat


def _from_chroma_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    if not metadata:
        return {}
    raw = metadata.get(_METADATA_KEY)
    if raw is None:
        return dict(metadata)
    return json.loads(raw)


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed store using an embedded persistent client.

    Parameters
    ----------
    path:
        Directory the persistent client writes ``chroma.sqlite3`` into.
    embeddings:
        Embedding function used for queries.
    collection_name:
        Name of the Chroma collection inside *path*.
    """

    index_filename = "chroma.sqlite3"

    def __init__(
        self,
        path: str | Path,
        embeddings: Embeddings,
        *,
        collection_name: str = "chunks",
    ) -> None:
        super().__init__(path, embeddings)
        try:
            self._client = chromadb.PersistentClient(path=str(self.path))
            self._collection = self._client.get_or_create_collection(collection_name)
        except Exception as exc:
            raise VectorStoreError(f"failed to open Chroma store at {self.path}: {exc}") from exc

    @classmethod
    def load(cls, path: str | Path, embeddings: Embeddings) -> ChromaVectorStore:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        return cls(path, embeddings)

    # -- VectorStoreBase overrides --------------------------------------------

    def add_vectors(
        self,
        vectors: Sequence[list[float]],
        documents: Sequence[Document],
        ids: Sequence[str],
    ) -> None:
        if not (len(vectors) == len(documents) == len(ids)):
            raise ValueError("vectors, documents and ids must have the same length")
        if not vectors:
            return
        self._collection.upsert(
            ids=list(ids),
            embeddings=[list(v) for v in vectors],
            documents=[doc.page_content for doc in documents],
            metadatas=[_to_chroma_metadata(dict(doc.metadata)) for doc in documents],
        )

    def delete(self, ids: Sequence[str]) -> int:
        known = self.get_mapping()
        doomed = [i for i in dict.fromkeys(ids) if i in known]
        if doomed:
            self._collection.delete(ids=doomed)
        return len(doomed)

    def save(self) -> None:
        # The persistent client writes through on every mutation.
        logger.debug("Chroma store at %s persisted on write", self.path)

    def get_mapping(self) -> dict[str, int]:
        result = self._collection.get(include=["metadatas"])
        return {doc_id: index for index, doc_id in enumerate(result.get("ids") or [])}

    def similarity_search_with_score(self, query: str, k: int = 4) -> list[tuple[Document, float]]:
        total = self._collection.count()
        if not total or k <= 0:
            return []

        embedding = self.embeddings.embed_query(query)
        results = self._collection.query(
            query_embeddings=[embedding],
            n_results=min(k, total),
            include=["documents", "metadatas", "distances"],
        )

        hits: list[tuple[Document, float]] = []
        ids = results.get("ids", [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for doc_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Chroma returns L2 distances; convert to a 0-1 similarity score.
            score = 1.0 / (1.0 + dist)
            doc = Document(id=doc_id, page_content=content or "", metadata=_from_chroma_metadata(meta))
            hits.append((doc, score))
        return hits

    def list_documents(self) -> list[Document]:
        result = self._collection.get(include=["documents", "metadatas"])
        ids = result.get("ids") or []
        docs = result.get("documents") or [None] * len(ids)
        metas = result.get("metadatas") or [None] * len(ids)
        return [
            Document(id=doc_id, page_content=content or "", metadata=_from_chroma_metadata(meta))
            for doc_id, content, meta in zip(ids, docs, metas)
        ]
