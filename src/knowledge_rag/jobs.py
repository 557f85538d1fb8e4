"""Ingestion job queue.

Jobs are deduplicated by fingerprint: while a job is queued or running,
enqueueing an identical job is a no-op.  A fixed pool of workers drains
the queue; each job runs under a timeout and a per-document lock, and a
failed or timed-out job is logged and never retried.

Usage::

    queue = JobQueue(handler, concurrency=2, timeout=600)
    queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="doc"))
    await queue.join()
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from knowledge_rag.errors import JobValidationError

logger = logging.getLogger(__name__)

JobHandler = Callable[["Job"], Awaitable[Any]]


class Job(BaseModel):
    """One request to (re-)embed a document."""

    model_config = {"frozen": True}

    knowledge_base_id: str
    document_id: str
    update: bool = False

    def payload(self) -> dict[str, Any]:
        """Return the external, camelCase form of the job."""
        return {
            "knowledgeBaseId": self.knowledge_base_id,
            "documentId": self.document_id,
            "update": self.update,
        }

    @property
    def fingerprint(self) -> str:
        canonical = json.dumps(self.payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Job:
        """Build a job from its camelCase payload.

        Raises
        ------
        JobValidationError
            If the payload is malformed.
        """
        try:
            return cls(
                knowledge_base_id=payload["knowledgeBaseId"],
                document_id=payload["documentId"],
                update=payload.get("update", False),
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise JobValidationError(f"invalid job payload {dict(payload)!r}: {exc}") from exc


class JobQueue:
    """Bounded-concurrency async worker pool with fingerprint deduplication.

    Parameters
    ----------
    handler:
        Coroutine function executing one job.
    concurrency:
        Number of workers.
    timeout:
        Per-job timeout in seconds.
    """

    def __init__(self, handler: JobHandler, *, concurrency: int = 2, timeout: float = 600.0) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._handler = handler
        self.concurrency = concurrency
        self.timeout = timeout

        self._queue: asyncio.Queue[Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[str] = set()
        self._document_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # -- public API -----------------------------------------------------------

    @property
    def pending(self) -> frozenset[str]:
        """Fingerprints of jobs that are queued or executing."""
        return frozenset(self._pending)

    def enqueue_if_absent(self, job: Job | Mapping[str, Any]) -> bool:
        """Queue *job* unless an identical job is already pending.

        Must be called from a running event loop; never blocks.

        Returns
        -------
        bool
            ``True`` when the job was queued, ``False`` when it was a duplicate.

        Raises
        ------
        JobValidationError
            If the job is malformed.
        """
        job = self._validate(job)
        queue = self._ensure_started()

        fingerprint = job.fingerprint
        if fingerprint in self._pending:
            logger.debug("job %s already pending (document %s)", fingerprint[:12], job.document_id)
            return False

        self._pending.add(fingerprint)
        queue.put_nowait(job)
        logger.info("Queued job %s for document %s (update=%s)", fingerprint[:12], job.document_id, job.update)
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Cancel the workers; queued jobs are dropped."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._queue = None
        self._loop = None
        self._pending.clear()

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _validate(job: Job | Mapping[str, Any]) -> Job:
        if not isinstance(job, Job):
            if not isinstance(job, Mapping):
                raise JobValidationError(f"job must be a Job or a payload mapping, got {type(job).__name__}")
            job = Job.from_payload(job)
        if not job.knowledge_base_id or not job.document_id:
            raise JobValidationError("job requires a knowledge base id and a document id")
        return job

    def _ensure_started(self) -> asyncio.Queue[Job]:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop:
            # Workers are bound to the loop that first receives a job.
            self._loop = loop
            self._queue = asyncio.Queue()
            self._pending.clear()
            self._document_locks.clear()
            self._lock_users.clear()
            self._workers = [
                loop.create_task(self._worker(self._queue), name=f"ingestion-worker-{index}")
                for index in range(self.concurrency)
            ]
            logger.debug("Started %d ingestion workers", self.concurrency)
        return self._queue

    async def _worker(self, queue: asyncio.Queue[Job]) -> None:
        while True:
            job = await queue.get()
            try:
                await self._run(job)
            finally:
                self._pending.discard(job.fingerprint)
                queue.task_done()

    async def _run(self, job: Job) -> None:
        doc_id = job.document_id
        lock = self._document_locks.setdefault(doc_id, asyncio.Lock())
        self._lock_users[doc_id] = self._lock_users.get(doc_id, 0) + 1
        try:
            async with lock:
                try:
                    await asyncio.wait_for(self._handler(job), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.error("job %s timed out after %gs (document %s)", job.fingerprint[:12], self.timeout, doc_id)
                except Exception:
                    logger.exception("job %s failed (document %s)", job.fingerprint[:12], doc_id)
        finally:
            # Drop the lock once no job of this document holds or awaits it.
            self._lock_users[doc_id] -= 1
            if not self._lock_users[doc_id]:
                del self._lock_users[doc_id]
                del self._document_locks[doc_id]
