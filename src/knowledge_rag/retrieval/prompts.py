"""Prompt templates for retrieval-time LLM calls."""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

# ── Query paraphrasing ────────────────────────────────────────────────

PARAPHRASE_SYSTEM = """\
You are a search assistant for a document retrieval system.

Rewrite the user's question into {count} alternative search queries that
keep its meaning but vary wording, synonyms and level of detail, so that
relevant passages phrased differently are still found.

Respond with one query per line and nothing else: no numbering, no
commentary, no blank lines.
"""


def build_paraphrase_prompt(query: str, count: int) -> list[BaseMessage]:
    """Build the prompt asking for *count* paraphrases of *query*."""
    return [
        SystemMessage(content=PARAPHRASE_SYSTEM.format(count=count)),
        HumanMessage(content=f"Question: {query}"),
    ]
