"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine-wide settings, populated from env vars or .env file."""

    # LLM (paraphrase expansion)
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="LLM model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible LLM API. Leave empty to use "
            "OpenAI cloud, e.g. 'http://llm-server.local/v1' for vLLM."
        ),
    )
    llm_temperature: float = Field(default=0.7, description="Sampling temperature for paraphrases")
    llm_timeout_seconds: float = 30.0
    llm_max_retries: int = 1

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = 64
    embedding_concurrency: int = 4

    # Storage
    knowledge_data_dir: Path = Field(
        default=Path("./data/knowledge"),
        description="Root holding vectors/, sources/ and processed/ per knowledge base",
    )
    vector_store_backend: str = Field(default="faiss", description="'faiss' or 'chroma'")

    # Chunking
    chunk_size: int = 1024
    chunk_overlap: int = 100
    chunk_separators: list[str] = Field(default_factory=lambda: ["\n\n", "\n", " ", ""])

    # Job queue
    queue_concurrency: int = 2
    job_timeout_seconds: float = 600.0

    # Retrieval
    retrieval_top_n: int = 4
    vector_weight: float = 0.7
    lexical_weight: float = 0.3
    rrf_k: int = 60
    paraphrase_count: int = 3
    consistency_bonus: float = 0.1

    # Crawling
    jina_api_key: str = ""
    firecrawl_api_key: str = ""
    crawl_timeout_seconds: int = 60
    crawl_max_retries: int = 3

    # Discussion API
    discussion_api_url: str = "http://localhost:3030/api/call"
    discussion_app_url: str = "http://localhost:3030/discuss"
    discussion_page_size: int = 20

    # Secondary full-text index (Meilisearch); empty URL disables it
    meilisearch_url: str = ""
    meilisearch_api_key: str = ""
    meilisearch_index_prefix: str = "knowledge"
    search_index_retries: int = 3
    search_index_backoff_seconds: float = 3.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Process-wide defaults; components take an explicit Settings when given one.
settings = Settings()
