"""Exception hierarchy shared by the ingestion and retrieval layers."""

from __future__ import annotations


class KnowledgeRAGError(Exception):
    """Base class for every error raised by this package."""


class JobValidationError(KnowledgeRAGError, ValueError):
    """The job payload is missing or malformed; it is never queued."""


class KnowledgeBaseNotFoundError(KnowledgeRAGError):
    def __init__(self, knowledge_base_id: str) -> None:
        super().__init__(f"knowledge base {knowledge_base_id} not found")
        self.knowledge_base_id = knowledge_base_id


class DocumentNotFoundError(KnowledgeRAGError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"document {document_id} not found")
        self.document_id = document_id


class InvalidSourceError(KnowledgeRAGError):
    """A document's source payload does not match the processor handling it."""


class ProviderError(KnowledgeRAGError):
    """An external provider (embedding, crawl, LLM, discussion API) failed."""


class VectorStoreError(KnowledgeRAGError):
    """The vector store could not be built, loaded or persisted."""
