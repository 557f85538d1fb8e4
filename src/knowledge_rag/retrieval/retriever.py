"""Hybrid retriever: BM25 + vector ensembles with rank fusion.

For every query variant (the query itself, plus LLM paraphrases when
expansion is enabled) an ``EnsembleRetriever`` over the vector store and
a BM25 index built from the same chunks produces one ranked list, and
the full-text index, when configured, produces another.  All lists are
fused with reciprocal-rank fusion, deduplicated by chunk text and
truncated.

Usage::

    from knowledge_rag.retrieval.retriever import HybridRetriever

    retriever = HybridRetriever(ctx, "kb-1", n=4, expand_queries=True)
    for r in await retriever.search("How do I reset my password?"):
        print(r.score, r.content[:80])
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from langchain.retrievers import EnsembleRetriever
from langchain_community.retrievers import BM25Retriever
from langchain_core.documents import Document

from knowledge_rag.ingestion.chunker import extract_text
from knowledge_rag.retrieval.fusion import reciprocal_rank_fusion, tokenize, unique_by_content
from knowledge_rag.retrieval.models import RetrievalResult
from knowledge_rag.retrieval.paraphrase import expand_query

if TYPE_CHECKING:
    from knowledge_rag.context import EngineContext

logger = logging.getLogger(__name__)


class HybridRetriever:
    """Answers relevance queries against one knowledge base.

    Parameters
    ----------
    context:
        Engine context supplying the vector-store cache, LLM and
        full-text index client.
    knowledge_base_id:
        Knowledge base to search.
    n:
        Maximum number of results; defaults to ``retrieval_top_n``.
    expand_queries:
        Also search LLM paraphrases of the query.
    """

    def __init__(
        self,
        context: EngineContext,
        knowledge_base_id: str,
        *,
        n: int | None = None,
        expand_queries: bool = False,
    ) -> None:
        self.ctx = context
        self.knowledge_base_id = knowledge_base_id
        self.n = n if n is not None else context.settings.retrieval_top_n
        self.expand_queries = expand_queries

    # -- public API -----------------------------------------------------------

    async def search(self, query: str) -> list[RetrievalResult]:
        """Return at most ``n`` results, best first; ``[]`` for an empty store."""
        cfg = self.ctx.settings
        store = await self.ctx.load_store(self.knowledge_base_id)

        k = min(self.n, len(store.get_mapping()))
        if k <= 0 or not query.strip():
            logger.info("Nothing to search in knowledge base %s", self.knowledge_base_id)
            return []

        corpus = await asyncio.to_thread(store.list_documents)
        bm25 = BM25Retriever.from_documents(corpus, k=k, preprocess_func=tokenize)
        ensemble = EnsembleRetriever(
            retrievers=[store.as_retriever(k=k), bm25],
            weights=[cfg.vector_weight, cfg.lexical_weight],
        )

        variants = [query]
        if self.expand_queries:
            variants.extend(await expand_query(self.ctx.llm, query, cfg.paraphrase_count))

        per_variant = await asyncio.gather(*(self._variant_lists(ensemble, variant, k) for variant in variants))
        result_lists = [ranked for lists in per_variant for ranked in lists if ranked]

        fused = reciprocal_rank_fusion(result_lists, k=cfg.rrf_k, consistency_bonus=cfg.consistency_bonus)
        ranked = unique_by_content(fused)[:k]
        logger.debug(
            "Query %r: %d variant(s), %d list(s), %d fused, %d returned",
            query, len(variants), len(result_lists), len(fused), len(ranked),
        )
        return [self._to_result(doc, score) for doc, score in ranked]

    # -- internals ------------------------------------------------------------

    async def _variant_lists(self, ensemble: EnsembleRetriever, variant: str, k: int) -> list[list[Document]]:
        lists = [await ensemble.ainvoke(variant)]
        if self.ctx.search_client.can_use:
            lists.append(await self._full_text(variant, k))
        return lists

    async def _full_text(self, query: str, k: int) -> list[Document]:
        hits = await asyncio.to_thread(self.ctx.search_client.search, self.knowledge_base_id, query, k)
        return [
            Document(
                page_content=hit.get("pageContent") or "",
                metadata={**(hit.get("metadata") or {}), "relevanceScore": float(hit.get("_rankingScore", 1.0))},
            )
            for hit in hits
            if hit.get("pageContent")
        ]

    @staticmethod
    def _to_result(doc: Document, score: float) -> RetrievalResult:
        metadata = dict(doc.metadata)
        metadata.setdefault("documentId", None)
        metadata["relevanceScore"] = score
        return RetrievalResult(content=extract_text(doc.page_content), metadata=metadata, score=score)
