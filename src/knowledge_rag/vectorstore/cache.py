"""Per-path cache of opened vector stores."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from knowledge_rag.vectorstore.base import VectorStoreBase

logger = logging.getLogger(__name__)


class VectorStoreCache:
    """Keeps one opened store per directory.

    Concurrent :meth:`load` calls for the same path share a single
    in-flight construction task, so a store is never opened twice.
    A failed construction is not cached.

    Parameters
    ----------
    factory:
        Blocking callable that opens the store at a path; it runs in a
        worker thread.
    """

    def __init__(self, factory: Callable[[Path], VectorStoreBase]) -> None:
        self._factory = factory
        self._stores: dict[Path, VectorStoreBase] = {}
        self._loading: dict[Path, asyncio.Task[VectorStoreBase]] = {}

    @staticmethod
    def _key(path: str | Path) -> Path:
        return Path(path).resolve()

    async def load(self, path: str | Path) -> VectorStoreBase:
        key = self._key(path)
        store = self._stores.get(key)
        if store is not None:
            return store

        task = self._loading.get(key)
        if task is None:
            logger.debug("Opening vector store at %s", key)
            task = asyncio.get_running_loop().create_task(asyncio.to_thread(self._factory, key))
            self._loading[key] = task

        try:
            store = await asyncio.shield(task)
        finally:
            if task.done() and self._loading.get(key) is task:
                del self._loading[key]

        self._stores.setdefault(key, store)
        return self._stores[key]

    def evict(self, path: str | Path) -> bool:
        """Drop the cached store for *path*; return whether one was cached."""
        key = self._key(path)
        self._loading.pop(key, None)
        return self._stores.pop(key, None) is not None

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return self._key(path) in self._stores
