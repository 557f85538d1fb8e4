"""LLM query expansion."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from knowledge_rag.retrieval.prompts import build_paraphrase_prompt

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def parse_paraphrases(text: str, query: str, count: int) -> list[str]:
    """Extract up to *count* distinct paraphrases from a model reply."""
    seen = {query.strip().lower()}
    paraphrases: list[str] = []
    for line in text.splitlines():
        candidate = _LIST_MARKER_RE.sub("", line).strip().strip('"').strip()
        if not candidate or candidate.lower() in seen:
            continue
        seen.add(candidate.lower())
        paraphrases.append(candidate)
        if len(paraphrases) >= count:
            break
    return paraphrases


async def expand_query(llm: BaseChatModel, query: str, count: int = 3) -> list[str]:
    """Return up to *count* paraphrases of *query*.

    Never raises: any model failure yields an empty list so the caller
    falls back to the original query alone.
    """
    if count <= 0:
        return []
    try:
        response = await llm.ainvoke(build_paraphrase_prompt(query, count))
    except Exception as exc:
        logger.warning("Query expansion failed; using the original query only: %s", exc)
        return []

    content = getattr(response, "content", response)
    if not isinstance(content, str):
        logger.warning("Query expansion returned non-text content; ignoring it")
        return []

    paraphrases = parse_paraphrases(content, query, count)
    logger.debug("Expanded %r into %d paraphrases", query, len(paraphrases))
    return paraphrases
