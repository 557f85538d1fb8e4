"""Secondary full-text index on Meilisearch.

Every knowledge base gets its own index ``<prefix>-<kb_id>`` holding one
entry per chunk::

    {"id": <md5(kb_id + text)>, "knowledgeBaseId": ..., "pageContent": <text>, "metadata": {...}}

The index is best-effort: mutations are retried a bounded number of
times and then logged and dropped, and search failures yield no results.
Nothing here ever raises into the ingestion pipeline.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import meilisearch
from meilisearch.errors import MeilisearchApiError, MeilisearchError
from requests import RequestException

from knowledge_rag.config import Settings, settings as default_settings
from knowledge_rag.ingestion.chunker import extract_text

if TYPE_CHECKING:
    from langchain_core.documents import Document

    from knowledge_rag.vectorstore.base import VectorStoreBase

logger = logging.getLogger(__name__)

T = TypeVar("T")

INDEX_ATTRIBUTES = ["pageContent", "knowledgeBaseId"]
INDEX_SETTINGS = {
    "searchableAttributes": INDEX_ATTRIBUTES,
    "filterableAttributes": INDEX_ATTRIBUTES,
    "sortableAttributes": INDEX_ATTRIBUTES,
    "rankingRules": ["sort", "exactness", "words", "typo", "proximity", "attribute"],
}
PRIMARY_KEY = "id"


def search_id(knowledge_base_id: str, text: str) -> str:
    """Stable index id of a chunk text within a knowledge base."""
    return hashlib.md5(f"{knowledge_base_id}:{text}".encode("utf-8")).hexdigest()


class KnowledgeSearchClient:
    """Meilisearch-backed full-text index, one index per knowledge base.

    Parameters
    ----------
    settings:
        Supplies the server URL (empty disables the index), API key,
        index-name prefix and retry policy.
    client:
        Pre-built ``meilisearch.Client``; mainly for tests.
    """

    def __init__(self, settings: Settings | None = None, client: Any | None = None) -> None:
        self.settings = settings or default_settings
        self._client = client
        if self._client is None and self.settings.meilisearch_url:
            self._client = meilisearch.Client(
                self.settings.meilisearch_url,
                self.settings.meilisearch_api_key or None,
            )

    @property
    def can_use(self) -> bool:
        return self._client is not None

    def index_name(self, knowledge_base_id: str) -> str:
        return f"{self.settings.meilisearch_index_prefix}-{knowledge_base_id}"

    def _index(self, knowledge_base_id: str) -> Any:
        if self._client is None:
            raise RuntimeError("search index is not configured")
        return self._client.index(self.index_name(knowledge_base_id))

    def _retry(self, action: str, fn: Callable[[], T]) -> T | None:
        """Run *fn* up to ``search_index_retries`` times; log and drop terminal failures."""
        attempts = max(1, self.settings.search_index_retries)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except (MeilisearchError, RequestException) as exc:
                if attempt == attempts:
                    logger.error("Search index %s failed after %d attempt(s): %s", action, attempts, exc)
                    return None
                logger.warning("Retry %d/%d for search index %s: %s", attempt, attempts, action, exc)
                time.sleep(self.settings.search_index_backoff_seconds)
        return None

    # -- documents ------------------------------------------------------------

    def format_documents(self, knowledge_base_id: str, documents: Sequence[Document]) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for doc in documents:
            text = extract_text(doc.page_content)
            if not text:
                continue
            entries.append(
                {
                    "id": search_id(knowledge_base_id, text),
                    "knowledgeBaseId": knowledge_base_id,
                    "pageContent": text,
                    "metadata": dict(doc.metadata),
                }
            )
        return entries

    def ensure_index(self, knowledge_base_id: str) -> None:
        """Create the index with its settings when it does not exist yet."""
        uid = self.index_name(knowledge_base_id)
        try:
            self._client.get_index(uid)  # type: ignore[union-attr]
            return
        except MeilisearchApiError:
            logger.info("Creating search index %s", uid)
        task = self._client.create_index(uid, {"primaryKey": PRIMARY_KEY})  # type: ignore[union-attr]
        self._client.wait_for_task(task.task_uid)  # type: ignore[union-attr]
        self._index(knowledge_base_id).update_settings(INDEX_SETTINGS)

    def upsert(self, knowledge_base_id: str, documents: Sequence[Document]) -> None:
        if not self.can_use:
            return
        entries = self.format_documents(knowledge_base_id, documents)
        if not entries:
            return

        def _upsert() -> None:
            self.ensure_index(knowledge_base_id)
            self._index(knowledge_base_id).update_documents(entries, primary_key=PRIMARY_KEY)

        self._retry(f"upsert of {len(entries)} chunks into {knowledge_base_id}", _upsert)

    def remove_document(self, knowledge_base_id: str, segment_contents: Sequence[str]) -> None:
        """Remove the entries derived from a document's segment bodies."""
        if not self.can_use:
            return
        ids = sorted({search_id(knowledge_base_id, text) for text in map(extract_text, segment_contents) if text})
        if not ids:
            return
        self._retry(
            f"removal of {len(ids)} chunks from {knowledge_base_id}",
            lambda: self._index(knowledge_base_id).delete_documents(ids),
        )

    def backfill(self, knowledge_base_id: str, store: VectorStoreBase, batch_size: int = 10000) -> int:
        """Re-publish every chunk of *store*; return the number of chunks sent."""
        if not self.can_use:
            return 0
        docs = store.list_documents()
        if not docs:
            return 0
        if self._retry(f"setup of {knowledge_base_id}", lambda: self.ensure_index(knowledge_base_id) or True) is None:
            return 0

        sent = 0
        for start in range(0, len(docs), batch_size):
            batch = self.format_documents(knowledge_base_id, docs[start : start + batch_size])
            logger.debug("index chunks: skip=%d total=%d size=%d", start, len(docs), batch_size)
            result = self._retry(
                f"backfill batch {start // batch_size} of {knowledge_base_id}",
                lambda batch=batch: self._index(knowledge_base_id).update_documents(batch, primary_key=PRIMARY_KEY),
            )
            if result is not None:
                sent += len(batch)
        logger.info("Backfilled %d chunks into %s", sent, self.index_name(knowledge_base_id))
        return sent

    # -- search ---------------------------------------------------------------

    def search(self, knowledge_base_id: str, query: str, limit: int = 10) -> list[dict[str, Any]]:
        """Return raw hits (with ``_rankingScore``); failures yield ``[]``."""
        if not self.can_use:
            return []
        try:
            result = self._index(knowledge_base_id).search(
                query, {"limit": limit, "showRankingScore": True}
            )
        except (MeilisearchError, RequestException) as exc:
            logger.warning("Search index query failed for %s: %s", knowledge_base_id, exc)
            return []
        return list(result.get("hits") or [])
