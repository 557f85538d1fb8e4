"""Engine context — owns every piece of process-wide state.

Create one :class:`EngineContext` at process start and pass it around;
nothing in the package keeps module-level queues or caches.

Usage::

    ctx = EngineContext(records=InMemoryRecordStore())
    ctx.enqueue("kb-1", "doc-1")
    await ctx.queue.join()
    await ctx.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import TYPE_CHECKING, Any

from knowledge_rag.config import Settings, settings as default_settings
from knowledge_rag.events import ProgressEvents
from knowledge_rag.ingestion.discussion import DiscussionClient
from knowledge_rag.ingestion.ledger import EmbeddingLedger
from knowledge_rag.jobs import Job, JobQueue
from knowledge_rag.records.base import RecordStore
from knowledge_rag.records.memory import InMemoryRecordStore
from knowledge_rag.records.models import KnowledgeBase
from knowledge_rag.search_index import KnowledgeSearchClient
from knowledge_rag.vectorstore import VectorStoreBase, VectorStoreCache, get_backend

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)


class EngineContext:
    """Explicit owner of stores, caches, clients and the job queue.

    Parameters
    ----------
    settings:
        Engine settings; defaults to the environment-loaded settings.
    records:
        Record store; defaults to an :class:`InMemoryRecordStore`.
    embeddings:
        Embedding function; built from settings on first use when omitted.
    llm:
        Chat model used for query expansion; built from settings on first
        use when omitted.
    search_client:
        Full-text index client; built from settings when omitted.
    discussion_client:
        Discussion API client; built from settings when omitted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        records: RecordStore | None = None,
        *,
        embeddings: Embeddings | None = None,
        llm: BaseChatModel | None = None,
        search_client: KnowledgeSearchClient | None = None,
        discussion_client: DiscussionClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.records = records if records is not None else InMemoryRecordStore()
        self._embeddings = embeddings
        self._llm = llm
        self.search_client = search_client or KnowledgeSearchClient(self.settings)
        self.discussion_client = discussion_client or DiscussionClient(
            self.settings.discussion_api_url,
            self.settings.discussion_page_size,
        )

        self.events = ProgressEvents()
        self.ledger = EmbeddingLedger(self.records)
        self.vector_stores = VectorStoreCache(self._open_store)

        self._queue: JobQueue | None = None
        self._store_locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # -- lazily built collaborators -------------------------------------------

    @property
    def embeddings(self) -> Embeddings:
        if self._embeddings is None:
            from knowledge_rag.ingestion.embedder import get_embedding_function

            self._embeddings = get_embedding_function(self.settings)
        return self._embeddings

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            from knowledge_rag.llm import get_llm

            self._llm = get_llm(self.settings)
        return self._llm

    @property
    def queue(self) -> JobQueue:
        if self._queue is None:
            self._queue = JobQueue(
                self._run_job,
                concurrency=self.settings.queue_concurrency,
                timeout=self.settings.job_timeout_seconds,
            )
        return self._queue

    # -- directories ----------------------------------------------------------

    def _data_dir(self, *parts: str) -> Path:
        path = Path(self.settings.knowledge_data_dir).joinpath(*parts)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def source_dir(self, knowledge_base_id: str) -> Path:
        return self._data_dir("sources", knowledge_base_id)

    def processed_dir(self, knowledge_base_id: str) -> Path:
        return self._data_dir("processed", knowledge_base_id)

    def vector_path(self, knowledge_base_id: str) -> Path:
        """Return the vector-store directory of a knowledge base.

        Resource-backed knowledge bases use their bundled directory, either
        directly (when it holds the index file) or its ``<kb_id>``
        sub-directory.  Everything else lives under ``vectors/<kb_id>``.
        """
        knowledge_base = self.records.find_one(KnowledgeBase, id=knowledge_base_id)
        if knowledge_base is not None and knowledge_base.resource_path:
            resource = Path(knowledge_base.resource_path)
            backend = get_backend(self.settings.vector_store_backend)
            if backend.is_initialized(resource):
                return resource
            return resource / knowledge_base_id
        return Path(self.settings.knowledge_data_dir) / "vectors" / knowledge_base_id

    # -- vector stores --------------------------------------------------------

    def _open_store(self, path: Path) -> VectorStoreBase:
        backend = get_backend(self.settings.vector_store_backend)
        return backend.load(path, self.embeddings)

    async def load_store(self, knowledge_base_id: str) -> VectorStoreBase:
        return await self.vector_stores.load(self.vector_path(knowledge_base_id))

    def store_lock(self, knowledge_base_id: str) -> asyncio.Lock:
        """Lock serializing writes to one knowledge base's store."""
        return self._store_locks.setdefault(knowledge_base_id, asyncio.Lock())

    # -- jobs -----------------------------------------------------------------

    async def _run_job(self, job: Job) -> None:
        from knowledge_rag.ingestion.pipeline import IngestionPipeline

        await IngestionPipeline(self).execute(job)

    def enqueue(self, knowledge_base_id: str, document_id: str, update: bool = False) -> bool:
        """Queue an ingestion job; ``False`` when an identical job is pending."""
        return self.queue.enqueue_if_absent(
            Job(knowledge_base_id=knowledge_base_id, document_id=document_id, update=update)
        )

    # -- background tasks -----------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run *coro* in the background; failures are logged, never raised."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every background task, including ones spawned meanwhile."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        if self._queue is not None:
            await self._queue.close()
        await self.drain()
