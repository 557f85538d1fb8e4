"""
Ingestion — source materialization, chunking, and embedding into the
per-knowledge-base vector store.

The :class:`~knowledge_rag.ingestion.pipeline.IngestionPipeline` drives
one document through its processor, the chunker, the embedding provider
and the vector store, consulting the embedding-history ledger so that
unchanged records are never embedded twice.
"""
