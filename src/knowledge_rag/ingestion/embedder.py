"""Embedding function construction and batched async embedding."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from langchain_huggingface import HuggingFaceEmbeddings

from knowledge_rag.config import Settings, settings
from knowledge_rag.errors import ProviderError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embedding_function(cfg: Settings | None = None) -> HuggingFaceEmbeddings:
    """Return the configured sentence-transformer embedding function."""
    cfg = cfg or settings
    return HuggingFaceEmbeddings(
        model_name=cfg.embedding_model,
        encode_kwargs={"normalize_embeddings": True},
    )


async def embed_texts(
    embeddings: Embeddings,
    texts: Sequence[str],
    *,
    batch_size: int = 64,
    concurrency: int = 4,
) -> list[list[float]]:
    """Embed *texts* in batches, keeping at most *concurrency* batches in flight.

    Parameters
    ----------
    embeddings:
        Any LangChain ``Embeddings`` implementation.
    texts:
        Chunk bodies to embed.
    batch_size:
        Number of texts per ``aembed_documents`` call.
    concurrency:
        Maximum number of batches embedded at the same time.

    Returns
    -------
    list[list[float]]
        One vector per text, in input order.

    Raises
    ------
    ProviderError
        If the embedding provider fails or returns the wrong number of vectors.
    """
    if not texts:
        return []
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    semaphore = asyncio.Semaphore(max(1, concurrency))
    batches = [list(texts[start : start + batch_size]) for start in range(0, len(texts), batch_size)]

    async def _embed(batch: list[str]) -> list[list[float]]:
        async with semaphore:
            try:
                return await embeddings.aembed_documents(batch)
            except Exception as exc:
                raise ProviderError(f"embedding provider failed: {exc}") from exc

    t0 = time.monotonic()
    results = await asyncio.gather(*(_embed(batch) for batch in batches))
    vectors = [vector for batch in results for vector in batch]

    if len(vectors) != len(texts):
        raise ProviderError(f"embedding provider returned {len(vectors)} vectors for {len(texts)} texts")

    logger.debug(
        "Embedded %d texts in %d batches (%.1fs)", len(texts), len(batches), time.monotonic() - t0
    )
    return vectors
