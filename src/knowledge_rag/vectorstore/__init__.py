"""
Vector-store adapter — one on-disk index per knowledge base.

Public surface::

    from knowledge_rag.vectorstore import VectorStoreBase, VectorStoreCache, get_backend

    store = get_backend("faiss").load(path, embeddings)
"""

from __future__ import annotations

from typing import Any

from knowledge_rag.vectorstore.base import VectorStoreBase
from knowledge_rag.vectorstore.cache import VectorStoreCache

_BACKENDS = {
    "faiss": "knowledge_rag.vectorstore.faiss_store:FaissVectorStore",
    "chroma": "knowledge_rag.vectorstore.chroma_store:ChromaVectorStore",
}


def get_backend(name: str) -> type[VectorStoreBase]:
    """Return the store class registered under *name*.

    Backends are imported on first use so the native library of the
    unused one never has to be installed.
    """
    import importlib

    try:
        target = _BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unknown vector store backend {name!r}; expected one of {sorted(_BACKENDS)}") from None
    module_name, attr = target.split(":")
    return getattr(importlib.import_module(module_name), attr)


def __getattr__(name: str) -> Any:
    if name == "FaissVectorStore":
        return get_backend("faiss")
    if name == "ChromaVectorStore":
        return get_backend("chroma")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ChromaVectorStore",
    "FaissVectorStore",
    "VectorStoreBase",
    "VectorStoreCache",
    "get_backend",
]
