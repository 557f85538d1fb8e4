"""Discussion-thread processor.

``save_original_file`` snapshots the selected threads as YAML::

    <thread_id>:
      post: {... primary post, languagesResult: [...], comments: [...]}
      link: https://.../discussions/<thread_id>

``processed_file`` flattens the snapshot into one record per thread and
locale; comments travel with the primary locale only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import requests
import yaml

from knowledge_rag.ingestion.discussion import build_post_link
from knowledge_rag.ingestion.processors.base import ProcessedRecord, SourceProcessor
from knowledge_rag.records.models import DiscussionSource, Document, SourceKind

logger = logging.getLogger(__name__)

# Post fields kept in the record content; everything else goes to metadata.
_CONTENT_FIELDS = ("title", "content", "author", "labels", "board")
_RENDER_FIELDS = ("id", "locale", "createdAt", "updatedAt")


class DiscussionProcessor(SourceProcessor):
    kind = SourceKind.DISCUSSION_THREAD

    async def save_original_file(self, document: Document) -> Document:
        source: DiscussionSource = self.payload(document)
        threads = await asyncio.to_thread(self.collect_threads, source)

        filename = f"{document.id}.yml"
        path = self.source_path(document, filename)
        dumped = yaml.safe_dump(threads, allow_unicode=True, sort_keys=False)
        await asyncio.to_thread(path.write_text, dumped, encoding="utf-8")
        logger.info("Saved %d discussion thread(s) for document %s", len(threads), document.id)
        return self.set_filename(document, filename)

    async def processed_file(self, document: Document) -> list[ProcessedRecord]:
        source: DiscussionSource = self.payload(document)
        raw = await asyncio.to_thread(self.source_path(document).read_text, encoding="utf-8")
        threads = yaml.safe_load(raw) or {}
        data = {"kind": self.kind.value, "mode": source.mode, "id": source.id, "thread_type": source.thread_type}
        return flatten_threads(threads, document_id=document.id, data=data)

    # -- thread selection -----------------------------------------------------

    def _thread_ids(self, source: DiscussionSource) -> list[str]:
        if source.mode == "single":
            return [source.id]

        client = self.ctx.discussion_client
        ids: list[str] = []
        try:
            if source.mode == "collection-of-threads":
                listing = client.iter_discussions(source.thread_type, board_id=source.id)
            else:
                listing = client.iter_discussions(source.id)
            for item in listing:
                ids.append(item["id"])
        except (requests.RequestException, ValueError, KeyError) as exc:
            logger.error("Listing threads for %s %r stopped after %d ids: %s", source.mode, source.id, len(ids), exc)
        return list(dict.fromkeys(ids))

    def collect_threads(self, source: DiscussionSource) -> dict[str, dict[str, Any]]:
        """Fetch every selected thread; per-thread failures are logged and skipped."""
        client = self.ctx.discussion_client
        app_url = self.ctx.settings.discussion_app_url

        threads: dict[str, dict[str, Any]] = {}
        for thread_id in self._thread_ids(source):
            try:
                post = client.get_thread(thread_id)
            except (requests.RequestException, ValueError) as exc:
                logger.error("Failed to fetch thread %s: %s", thread_id, exc)
                continue
            if post is None:
                logger.warning("Thread %s not found; skipping", thread_id)
                continue
            threads[thread_id] = {"post": post, "link": build_post_link(app_url, post, thread_id)}
        return threads


def flatten_threads(
    threads: dict[str, Any],
    *,
    document_id: str,
    data: dict[str, Any],
) -> list[ProcessedRecord]:
    """Turn a thread snapshot into one record per thread and locale."""
    records: list[ProcessedRecord] = []
    for thread_id, entry in threads.items():
        post = (entry or {}).get("post")
        if not post:
            continue
        link = entry.get("link") or ""

        variants = [post, *(post.get("languagesResult") or [])]
        for index, variant in enumerate(variants):
            if not variant:
                continue
            fields = {key: value for key, value in variant.items() if value}

            content = {key: fields.get(key) for key in (*_CONTENT_FIELDS, *_RENDER_FIELDS)}
            content["comments"] = (post.get("comments") or []) if index == 0 else []

            rest = {
                key: value
                for key, value in fields.items()
                if key not in _CONTENT_FIELDS and key not in ("comments", "languagesResult")
            }
            metadata = {
                **rest,
                "documentId": document_id,
                "data": dict(data),
                "title": variant.get("title") or "",
                "locale": variant.get("locale") or "",
                "link": link,
                "threadId": thread_id,
            }
            records.append(
                ProcessedRecord(content=json.dumps(content, ensure_ascii=False, default=str), metadata=metadata)
            )
    return records
