"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from knowledge_rag.config import Settings
from knowledge_rag.context import EngineContext
from knowledge_rag.records import InMemoryRecordStore
from knowledge_rag.search_index import KnowledgeSearchClient

EMBEDDING_SIZE = 32


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temp dir, with every external service disabled."""
    return Settings(
        _env_file=None,
        knowledge_data_dir=tmp_path / "knowledge",
        meilisearch_url="",
        search_index_backoff_seconds=0.0,
        crawl_max_retries=2,
        job_timeout_seconds=5.0,
    )


@pytest.fixture()
def embeddings() -> DeterministicFakeEmbedding:
    return DeterministicFakeEmbedding(size=EMBEDDING_SIZE)


@pytest.fixture()
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def make_context(settings: Settings, records: InMemoryRecordStore, embeddings: DeterministicFakeEmbedding):
    """Factory building an :class:`EngineContext` around the shared fakes."""

    def _make(**overrides: Any) -> EngineContext:
        kwargs: dict[str, Any] = {
            "embeddings": embeddings,
            "search_client": KnowledgeSearchClient(settings),
        }
        kwargs.update(overrides)
        return EngineContext(settings, records, **kwargs)

    return _make


@pytest.fixture()
def ctx(make_context) -> EngineContext:
    return make_context()
