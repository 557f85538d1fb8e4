"""FAISS implementation of the vector-store abstraction.

Layout on disk (LangChain ``FAISS.save_local``)::

    <path>/index.faiss   # the flat L2 index
    <path>/index.pkl     # docstore + index_to_docstore_id manifest
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import faiss
from langchain_community.docstore.in_memory import InMemoryDocstore
from langchain_community.vectorstores import FAISS
from langchain_core.documents import Document

from knowledge_rag.errors import VectorStoreError
from knowledge_rag.vectorstore.base import VectorStoreBase

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


class FaissVectorStore(VectorStoreBase):
    """FAISS-backed store persisted in one directory per knowledge base.

    The underlying index is created lazily on the first
    :meth:`add_vectors` call because its dimension comes from the vectors.
    """

    index_filename = "index.faiss"

    def __init__(self, path: str | Path, embeddings: Embeddings, store: FAISS | None = None) -> None:
        super().__init__(path, embeddings)
        self._store = store

    @classmethod
    def load(cls, path: str | Path, embeddings: Embeddings) -> FaissVectorStore:
        path = Path(path)
        if not cls.is_initialized(path):
            logger.debug("No FAISS index at %s; starting empty", path)
            return cls(path, embeddings)
        try:
            store = FAISS.load_local(str(path), embeddings, allow_dangerous_deserialization=True)
        except Exception as exc:
            raise VectorStoreError(f"failed to load FAISS index at {path}: {exc}") from exc
        logger.debug("Loaded FAISS index at %s (%d vectors)", path, store.index.ntotal)
        return cls(path, embeddings, store)

    # -- VectorStoreBase overrides --------------------------------------------

    def add_vectors(
        self,
        vectors: Sequence[list[float]],
        documents: Sequence[Document],
        ids: Sequence[str],
    ) -> None:
        if not (len(vectors) == len(documents) == len(ids)):
            raise ValueError(
                f"vectors ({len(vectors)}), documents ({len(documents)}) and ids ({len(ids)}) "
                "must have the same length"
            )
        if not vectors:
            return

        if self._store is None:
            self._store = FAISS(
                embedding_function=self.embeddings,
                index=faiss.IndexFlatL2(len(vectors[0])),
                docstore=InMemoryDocstore(),
                index_to_docstore_id={},
            )

        self._store.add_embeddings(
            text_embeddings=list(zip([doc.page_content for doc in documents], vectors)),
            metadatas=[dict(doc.metadata) for doc in documents],
            ids=list(ids),
        )

    def delete(self, ids: Sequence[str]) -> int:
        if self._store is None:
            return 0
        known = set(self.get_mapping())
        doomed = [i for i in dict.fromkeys(ids) if i in known]
        if doomed:
            self._store.delete(doomed)
        return len(doomed)

    def save(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        if self._store is None:
            return
        try:
            self._store.save_local(str(self.path))
        except Exception as exc:
            raise VectorStoreError(f"failed to save FAISS index at {self.path}: {exc}") from exc

    def get_mapping(self) -> dict[str, int]:
        if self._store is None:
            return {}
        return {doc_id: index for index, doc_id in self._store.index_to_docstore_id.items()}

    def similarity_search_with_score(self, query: str, k: int = 4) -> list[tuple[Document, float]]:
        total = len(self)
        if not total or k <= 0:
            return []
        hits = self._store.similarity_search_with_score(query, k=min(k, total))  # type: ignore[union-attr]
        # L2 distances; convert to a 0-1 similarity score.
        return [(doc, 1.0 / (1.0 + float(dist))) for doc, dist in hits]

    def list_documents(self) -> list[Document]:
        if self._store is None:
            return []
        docs: list[Document] = []
        for doc_id in self._store.index_to_docstore_id.values():
            doc = self._store.docstore.search(doc_id)
            if isinstance(doc, Document):
                docs.append(doc)
        return docs
