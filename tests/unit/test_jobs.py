"""Unit tests for the ingestion job queue."""

from __future__ import annotations

import asyncio

import pytest

from knowledge_rag.errors import JobValidationError
from knowledge_rag.jobs import Job, JobQueue


class TestJob:
    def test_payload_is_camel_case(self):
        job = Job(knowledge_base_id="kb", document_id="doc", update=True)
        assert job.payload() == {"knowledgeBaseId": "kb", "documentId": "doc", "update": True}

    def test_fingerprint(self):
        job = Job(knowledge_base_id="kb", document_id="doc")
        assert job.fingerprint == Job(knowledge_base_id="kb", document_id="doc").fingerprint
        assert job.fingerprint != Job(knowledge_base_id="kb", document_id="doc", update=True).fingerprint
        assert len(job.fingerprint) == 64

    def test_from_payload(self):
        job = Job.from_payload({"knowledgeBaseId": "kb", "documentId": "doc"})
        assert job == Job(knowledge_base_id="kb", document_id="doc", update=False)

    @pytest.mark.parametrize(
        "payload",
        [{"documentId": "doc"}, {"knowledgeBaseId": "kb", "documentId": "doc", "update": "maybe"}],
    )
    def test_from_payload_invalid(self, payload):
        with pytest.raises(JobValidationError):
            Job.from_payload(payload)


class TestJobQueue:
    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            JobQueue(lambda job: asyncio.sleep(0), concurrency=0)

    @pytest.mark.parametrize(
        "job",
        [
            Job(knowledge_base_id="", document_id="doc"),
            {"knowledgeBaseId": "kb"},
            "not a job",
        ],
    )
    def test_invalid_jobs_rejected(self, job):
        queue = JobQueue(lambda j: asyncio.sleep(0))
        with pytest.raises(JobValidationError):
            queue.enqueue_if_absent(job)

    def test_duplicate_is_ignored_while_pending(self):
        started: list[str] = []

        async def scenario():
            gate = asyncio.Event()

            async def handler(job: Job) -> None:
                started.append(job.document_id)
                await gate.wait()

            queue = JobQueue(handler, concurrency=1, timeout=5)
            job = Job(knowledge_base_id="kb", document_id="d1")

            assert queue.enqueue_if_absent(job) is True
            assert queue.enqueue_if_absent(job.payload()) is False
            assert job.fingerprint in queue.pending

            await asyncio.sleep(0.01)
            assert started == ["d1"]
            assert queue.enqueue_if_absent(job) is False

            gate.set()
            await queue.join()
            assert queue.pending == frozenset()

            assert queue.enqueue_if_absent(job) is True
            await queue.join()
            await queue.close()

        asyncio.run(scenario())
        assert started == ["d1", "d1"]

    def test_timeout_is_logged_and_queue_keeps_going(self, caplog):
        done: list[str] = []

        async def handler(job: Job) -> None:
            if job.document_id == "slow":
                await asyncio.sleep(10)
            done.append(job.document_id)

        async def scenario():
            queue = JobQueue(handler, concurrency=1, timeout=0.05)
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="slow"))
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="fast"))
            await queue.join()
            await queue.close()

        asyncio.run(scenario())
        assert done == ["fast"]
        assert "timed out after 0.05s (document slow)" in caplog.text

    def test_failure_is_isolated(self, caplog):
        done: list[str] = []

        async def handler(job: Job) -> None:
            if job.document_id == "bad":
                raise RuntimeError("boom")
            done.append(job.document_id)

        async def scenario():
            queue = JobQueue(handler, concurrency=1)
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="bad"))
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="good"))
            await queue.join()
            await queue.close()

        asyncio.run(scenario())
        assert done == ["good"]
        assert "failed (document bad)" in caplog.text

    def test_jobs_of_one_document_never_overlap(self):
        peaks: dict[str, int] = {}

        async def scenario(document_ids: list[str]) -> int:
            active = 0
            peak = 0

            async def handler(job: Job) -> None:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.02)
                active -= 1

            queue = JobQueue(handler, concurrency=2)
            for index, document_id in enumerate(document_ids):
                queue.enqueue_if_absent(
                    Job(knowledge_base_id="kb", document_id=document_id, update=bool(index % 2))
                )
            await queue.join()
            await queue.close()
            return peak

        peaks["same"] = asyncio.run(scenario(["d1", "d1"]))
        peaks["different"] = asyncio.run(scenario(["d1", "d2"]))

        assert peaks == {"same": 1, "different": 2}

    def test_document_locks_are_released_when_idle(self):
        async def handler(job: Job) -> None:
            await asyncio.sleep(0.01)

        async def scenario() -> tuple[set[str], set[str]]:
            queue = JobQueue(handler, concurrency=2)
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="d1"))
            queue.enqueue_if_absent(Job(knowledge_base_id="kb", document_id="d1", update=True))
            await asyncio.sleep(0)
            busy = set(queue._document_locks)
            await queue.join()
            idle = set(queue._document_locks)
            await queue.close()
            return busy, idle

        busy, idle = asyncio.run(scenario())
        assert busy == {"d1"}
        assert idle == set()
