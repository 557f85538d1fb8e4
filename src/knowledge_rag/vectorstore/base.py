"""Abstract base class for per-knowledge-base vector-store backends.

Every knowledge base owns one on-disk directory holding its index.
Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing the abstract methods; the pipeline and the retriever
are backend-agnostic.

Mutations (:meth:`VectorStoreBase.add_vectors`,
:meth:`VectorStoreBase.delete`) are only durable after
:meth:`VectorStoreBase.save`; callers always pair them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from langchain_core.documents import Document
    from langchain_core.embeddings import Embeddings
    from langchain_core.retrievers import BaseRetriever


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    path:
        Directory holding this knowledge base's index.
    embeddings:
        Embedding function used to embed queries.
    """

    #: File whose presence marks an initialized store directory.
    index_filename: ClassVar[str] = ""

    def __init__(self, path: str | Path, embeddings: Embeddings) -> None:
        self.path = Path(path)
        self.embeddings = embeddings

    # -- construction ---------------------------------------------------------

    @classmethod
    @abstractmethod
    def load(cls, path: str | Path, embeddings: Embeddings) -> VectorStoreBase:
        """Open the store at *path*, starting empty when nothing is on disk."""
        ...

    @classmethod
    def is_initialized(cls, path: str | Path) -> bool:
        """Return ``True`` when *path* holds a persisted index."""
        return (Path(path) / cls.index_filename).exists()

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def add_vectors(
        self,
        vectors: Sequence[list[float]],
        documents: Sequence[Document],
        ids: Sequence[str],
    ) -> None:
        """Add pre-computed *vectors* for *documents* under external *ids*."""
        ...

    @abstractmethod
    def delete(self, ids: Sequence[str]) -> int:
        """Delete the given external ids; unknown ids are ignored.

        Returns the number of vectors removed.
        """
        ...

    @abstractmethod
    def save(self) -> None:
        """Persist the store to :attr:`path`."""
        ...

    @abstractmethod
    def get_mapping(self) -> dict[str, int]:
        """Return ``{external_id: internal_index}`` for every stored vector."""
        ...

    @abstractmethod
    def similarity_search_with_score(self, query: str, k: int = 4) -> list[tuple[Document, float]]:
        """Return up to *k* ``(document, similarity)`` pairs, best first.

        Similarities are in ``(0, 1]``; higher means closer.
        """
        ...

    # -- optional overrides ---------------------------------------------------

    def similarity_search(self, query: str, k: int = 4) -> list[Document]:
        return [doc for doc, _ in self.similarity_search_with_score(query, k=k)]

    def list_documents(self) -> list[Document]:
        """Return every stored chunk.

        The default implementation runs a broad similarity search with a
        neutral query; backends with direct docstore access override it.
        """
        total = len(self)
        if not total:
            return []
        return self.similarity_search(" ", k=total)

    def as_retriever(self, k: int = 4) -> Any:
        """Return a LangChain retriever running :meth:`similarity_search`."""
        from langchain_core.retrievers import BaseRetriever

        outer = self

        class _StoreRetriever(BaseRetriever):
            """Adapter that satisfies LangChain's retriever protocol."""

            def _get_relevant_documents(self_inner, query: str, **kwargs: Any) -> list[Document]:  # type: ignore[override]  # noqa: N805
                return outer.similarity_search(query, k=k)

        retriever: BaseRetriever = _StoreRetriever()
        return retriever

    def __len__(self) -> int:
        return len(self.get_mapping())
