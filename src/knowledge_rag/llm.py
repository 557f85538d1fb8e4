"""Chat model behind query paraphrasing.

Retrieval only calls the model when a search asks for query expansion,
and :class:`~knowledge_rag.context.EngineContext` builds it on first use,
so deployments that never expand queries need neither a key nor an
endpoint.

Setting ``llm_base_url`` swaps the OpenAI API for any server speaking the
OpenAI chat-completions protocol (vLLM, LiteLLM, Ollama's ``/v1``).
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_openai import ChatOpenAI

from knowledge_rag.config import Settings, settings

logger = logging.getLogger(__name__)


def get_llm(cfg: Settings | None = None) -> ChatOpenAI:
    """Build the paraphrasing model from *cfg* (process defaults when omitted)."""
    cfg = cfg or settings
    api_key = cfg.openai_api_key
    endpoint: dict[str, Any] = {}

    if cfg.llm_base_url:
        logger.info("Paraphrasing with %s at %s", cfg.llm_model_name, cfg.llm_base_url)
        endpoint["base_url"] = cfg.llm_base_url
        # The client rejects a blank key even when the server ignores it.
        api_key = api_key or "EMPTY"

    return ChatOpenAI(
        model=cfg.llm_model_name,
        api_key=api_key,
        temperature=cfg.llm_temperature,
        timeout=cfg.llm_timeout_seconds,
        max_retries=cfg.llm_max_retries,
        **endpoint,
    )
