"""Per-document ingestion state machine.

``execute`` walks one document through::

    uploading -> save original -> processed records (YAML) -> [clear old
    embeddings on update] -> chunk / embed / store per record -> success

Any failure moves the document to ``error`` with the message and
re-raises.  Records whose content hash the ledger already marks as
embedded are skipped, so re-running a document only embeds what changed.

Usage::

    pipeline = IngestionPipeline(context)
    await pipeline.execute(Job(knowledge_base_id="kb", document_id="doc"))
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from langchain_core.documents import Document as ChunkDocument

from knowledge_rag.errors import DocumentNotFoundError, InvalidSourceError, KnowledgeBaseNotFoundError
from knowledge_rag.ingestion.chunker import SplitterConfig, split_content
from knowledge_rag.ingestion.embedder import embed_texts
from knowledge_rag.ingestion.ledger import content_hash
from knowledge_rag.ingestion.processors import ProcessedRecord, get_processor
from knowledge_rag.records.models import Document, EmbeddingStatus, KnowledgeBase, Segment, utcnow

if TYPE_CHECKING:
    from knowledge_rag.context import EngineContext
    from knowledge_rag.jobs import Job
    from knowledge_rag.vectorstore.base import VectorStoreBase

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "embedding job cancelled"


def _write_vectors(
    store: VectorStoreBase,
    vectors: list[list[float]],
    chunks: list[ChunkDocument],
    ids: list[str],
) -> None:
    store.add_vectors(vectors, chunks, ids)
    store.save()


def _delete_vectors(store: VectorStoreBase, ids: list[str]) -> int:
    removed = store.delete(ids)
    if removed:
        store.save()
    return removed


class IngestionPipeline:
    """Runs ingestion jobs against an :class:`~knowledge_rag.context.EngineContext`."""

    def __init__(self, context: EngineContext) -> None:
        self.ctx = context

    # -- record helpers -------------------------------------------------------

    def _get_document(self, knowledge_base_id: str, document_id: str) -> Document:
        document = self.ctx.records.find_one(Document, id=document_id, knowledge_base_id=knowledge_base_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def _get_knowledge_base(self, knowledge_base_id: str) -> KnowledgeBase:
        knowledge_base = self.ctx.records.find_one(KnowledgeBase, id=knowledge_base_id)
        if knowledge_base is None:
            raise KnowledgeBaseNotFoundError(knowledge_base_id)
        return knowledge_base

    def _send(self, knowledge_base_id: str, document_id: str, event_type: str, **values: Any) -> Document:
        """Persist *values* on the document and publish a progress event in the background."""
        self.ctx.records.update(Document, values, id=document_id, knowledge_base_id=knowledge_base_id)
        document = self._get_document(knowledge_base_id, document_id)
        self.ctx.spawn(self.ctx.events.publish(knowledge_base_id, event_type, document))
        return document

    def processed_path(self, knowledge_base_id: str, document_id: str) -> Path:
        return self.ctx.processed_dir(knowledge_base_id) / f"{document_id}.yml"

    # -- public API -----------------------------------------------------------

    async def execute(self, job: Job) -> Document:
        """Run the full pipeline for one job and return the final document.

        Raises
        ------
        DocumentNotFoundError
            If the document is missing; nothing is recorded.
        Exception
            Any other failure, including a missing knowledge base, after
            the document was moved to ``error``.
        """
        kb_id, doc_id = job.knowledge_base_id, job.document_id
        document = self._get_document(kb_id, doc_id)

        try:
            self._get_knowledge_base(kb_id)
            processor = get_processor(document.kind, self.ctx)

            self._send(
                kb_id, doc_id, "change",
                embedding_status=EmbeddingStatus.UPLOADING.value,
                embedding_start_at=utcnow(),
            )

            logger.debug("save original file of document %s", doc_id)
            document = await processor.save_original_file(self._get_document(kb_id, doc_id))
            if processor.requires_file and not document.filename:
                raise InvalidSourceError(f"document {doc_id} has no source file after saving")

            logger.debug("process file of document %s", doc_id)
            records = await processor.processed_file(document)
            await self._save_processed(kb_id, doc_id, records)

            if job.update:
                await self.clear_embeddings(kb_id, doc_id)

            logger.debug("start RAG for document %s", doc_id)
            await self.start_rag(kb_id, doc_id)

            document = self._send(
                kb_id, doc_id, "complete",
                embedding_status=EmbeddingStatus.SUCCESS.value,
                embedding_end_at=utcnow(),
                error=None,
            )
            logger.info("Embedded document %s of knowledge base %s", doc_id, kb_id)
            return document
        except asyncio.CancelledError:
            logger.error("Embedding pipeline cancelled for document %s (timeout or shutdown)", doc_id)
            self._send(
                kb_id, doc_id, "error",
                embedding_status=EmbeddingStatus.ERROR.value,
                embedding_end_at=utcnow(),
                error=CANCELLED_MESSAGE,
            )
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Embedding pipeline failed for document %s: %s", doc_id, message)
            self._send(
                kb_id, doc_id, "error",
                embedding_status=EmbeddingStatus.ERROR.value,
                embedding_end_at=utcnow(),
                error=message,
            )
            raise

    async def start_rag(self, knowledge_base_id: str, document_id: str) -> list[ChunkDocument]:
        """Embed every changed record of the processed file.

        Returns the chunks written to the vector store; they are also
        published to the full-text index in the background, even when a
        later record fails.
        """
        path = self.processed_path(knowledge_base_id, document_id)
        if not path.is_file():
            raise FileNotFoundError(f"processed file {path} not found")

        loaded = yaml.safe_load(await asyncio.to_thread(path.read_text, encoding="utf-8"))
        if loaded is None:
            items: list[Any] = []
        elif isinstance(loaded, list):
            items = loaded
        else:
            items = [loaded]

        document = self._get_document(knowledge_base_id, document_id)
        total = len(items)
        produced: list[ChunkDocument] = []

        try:
            for index, item in enumerate(items, start=1):
                content = item.get("content") if isinstance(item, dict) else None
                metadata = (item.get("metadata") if isinstance(item, dict) else None) or {}
                await self._embed_record(document, content, metadata, produced)

                if total > 1:
                    self._send(
                        knowledge_base_id, document_id, "change",
                        embedding_status=f"{index}/{total}",
                        error=None,
                    )
        finally:
            if produced and self.ctx.search_client.can_use:
                logger.info("Publishing %d chunks of document %s to the search index", len(produced), document_id)
                self.ctx.spawn(
                    asyncio.to_thread(self.ctx.search_client.upsert, knowledge_base_id, list(produced))
                )

        return produced

    async def _embed_record(
        self,
        document: Document,
        content: Any,
        metadata: dict[str, Any],
        produced: list[ChunkDocument],
    ) -> None:
        kb_id, doc_id = document.knowledge_base_id, document.id
        ledger = self.ctx.ledger

        if not isinstance(content, str) or not content.strip():
            logger.warning("Skipping empty record of document %s", doc_id)
            return

        digest = content_hash(content)
        if ledger.is_embedded(kb_id, doc_id, digest):
            logger.info("Record %s of document %s already embedded; skipping", digest, doc_id)
            return

        entry = ledger.begin(kb_id, doc_id, digest)
        try:
            chunks = await self._embed_chunks(document, content.strip(), metadata)
        except asyncio.CancelledError:
            ledger.fail(entry, CANCELLED_MESSAGE)
            raise
        except Exception as exc:
            ledger.fail(entry, str(exc) or type(exc).__name__)
            raise
        ledger.succeed(entry)
        produced.extend(chunks)

    async def _embed_chunks(self, document: Document, content: str, metadata: dict[str, Any]) -> list[ChunkDocument]:
        cfg = self.ctx.settings
        chunks = split_content(content, metadata, document.kind, SplitterConfig.from_settings(cfg))
        if not chunks:
            return []

        vectors = await embed_texts(
            self.ctx.embeddings,
            [chunk.page_content for chunk in chunks],
            batch_size=cfg.embedding_batch_size,
            concurrency=cfg.embedding_concurrency,
        )

        segments = [
            self.ctx.records.create(Segment(document_id=document.id, content=chunk.page_content))
            for chunk in chunks
        ]
        ids = [segment.id for segment in segments]
        for chunk, segment_id in zip(chunks, ids):
            chunk.id = segment_id

        store = await self.ctx.load_store(document.knowledge_base_id)
        async with self.ctx.store_lock(document.knowledge_base_id):
            write = asyncio.ensure_future(asyncio.to_thread(_write_vectors, store, vectors, chunks, ids))
            try:
                await asyncio.shield(write)
            except (Exception, asyncio.CancelledError):
                if not write.done():
                    # The worker thread still owns the store; keep the lock until it returns.
                    await asyncio.wait([write])
                    if write.exception() is None:
                        await asyncio.to_thread(_delete_vectors, store, ids)
                for segment_id in ids:
                    self.ctx.records.destroy(Segment, id=segment_id)
                raise

        logger.debug("Stored %d chunks of document %s", len(chunks), document.id)
        return chunks

    async def _save_processed(self, knowledge_base_id: str, document_id: str, records: list[ProcessedRecord]) -> None:
        path = self.processed_path(knowledge_base_id, document_id)
        dumped = yaml.safe_dump(
            [record.model_dump() for record in records], allow_unicode=True, sort_keys=False
        )
        await asyncio.to_thread(path.write_text, dumped, encoding="utf-8")
        self.ctx.records.update(
            Document,
            {"size": path.stat().st_size},
            id=document_id,
            knowledge_base_id=knowledge_base_id,
        )

    # -- removal --------------------------------------------------------------

    async def clear_embeddings(self, knowledge_base_id: str, document_id: str) -> int:
        """Drop a document's vectors, segments, ledger entries and index entries.

        Returns the number of vectors removed from the store.
        """
        segments = self.ctx.records.find_all(Segment, document_id=document_id)
        removed = 0
        if segments:
            if self.ctx.search_client.can_use:
                await asyncio.to_thread(
                    self.ctx.search_client.remove_document,
                    knowledge_base_id,
                    [segment.content for segment in segments],
                )

            store = await self.ctx.load_store(knowledge_base_id)
            async with self.ctx.store_lock(knowledge_base_id):
                removed = await asyncio.to_thread(_delete_vectors, store, [segment.id for segment in segments])
            self.ctx.records.destroy(Segment, document_id=document_id)

        self.ctx.ledger.clear(knowledge_base_id, document_id)
        logger.info("Cleared %d vectors of document %s", removed, document_id)
        return removed

    async def remove_document(self, knowledge_base_id: str, document_id: str) -> None:
        """Delete a document together with everything derived from it."""
        document = self._get_document(knowledge_base_id, document_id)
        await self.clear_embeddings(knowledge_base_id, document_id)

        self.processed_path(knowledge_base_id, document_id).unlink(missing_ok=True)
        if document.filename and document.filename.startswith(document_id):
            # Only snapshots written by the processors; uploads are owned by the caller.
            (self.ctx.source_dir(knowledge_base_id) / document.filename).unlink(missing_ok=True)

        self.ctx.records.destroy(Document, id=document_id, knowledge_base_id=knowledge_base_id)
        logger.info("Removed document %s from knowledge base %s", document_id, knowledge_base_id)

    async def delete_knowledge_base(self, knowledge_base_id: str) -> None:
        """Delete a knowledge base, its documents and (if mutable) its files."""
        knowledge_base = self._get_knowledge_base(knowledge_base_id)
        for document in self.ctx.records.find_all(Document, knowledge_base_id=knowledge_base_id):
            await self.remove_document(knowledge_base_id, document.id)

        vector_path = self.ctx.vector_path(knowledge_base_id)
        self.ctx.vector_stores.evict(vector_path)
        if not knowledge_base.resource_path:
            for directory in (
                vector_path,
                self.ctx.source_dir(knowledge_base_id),
                self.ctx.processed_dir(knowledge_base_id),
            ):
                await asyncio.to_thread(shutil.rmtree, directory, True)

        self.ctx.records.destroy(KnowledgeBase, id=knowledge_base_id)
        logger.info("Deleted knowledge base %s", knowledge_base_id)
