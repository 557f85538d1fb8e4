"""Result model returned by the hybrid retriever."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RetrievalResult(BaseModel):
    """A single ranked chunk.

    Attributes
    ----------
    content:
        Plain chunk text, with the metadata envelope removed.
    metadata:
        Chunk metadata; always contains ``documentId`` and
        ``relevanceScore``.
    score:
        Fused relevance score (higher is better).
    """

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0

    @property
    def document_id(self) -> str | None:
        return self.metadata.get("documentId")

    def to_dict(self) -> dict[str, Any]:
        """Return the external ``{content, metadata}`` shape."""
        return {"content": self.content, "metadata": dict(self.metadata)}
