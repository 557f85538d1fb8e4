"""``knowledge-rag`` command line.

Operates directly on the on-disk vector stores under
``KNOWLEDGE_DATA_DIR``::

    knowledge-rag search <kb_id> "how do I reset my password" --n 5 --expand
    knowledge-rag backfill <kb_id>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from knowledge_rag.config import Settings
from knowledge_rag.context import EngineContext

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="knowledge-rag", description="Knowledge-base retrieval tools")
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="run a hybrid search against a knowledge base")
    search.add_argument("knowledge_base_id")
    search.add_argument("query")
    search.add_argument("--n", type=int, default=None, help="maximum number of results")
    search.add_argument("--expand", action="store_true", help="also search LLM paraphrases of the query")

    backfill = sub.add_parser("backfill", help="re-publish every chunk to the full-text index")
    backfill.add_argument("knowledge_base_id")
    return parser


async def _search(ctx: EngineContext, args: argparse.Namespace) -> int:
    from knowledge_rag.retrieval.retriever import HybridRetriever

    retriever = HybridRetriever(ctx, args.knowledge_base_id, n=args.n, expand_queries=args.expand)
    results = await retriever.search(args.query)
    json.dump([r.to_dict() for r in results], sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


async def _backfill(ctx: EngineContext, args: argparse.Namespace) -> int:
    if not ctx.search_client.can_use:
        logger.error("MEILISEARCH_URL is not configured")
        return 1
    store = await ctx.load_store(args.knowledge_base_id)
    sent = await asyncio.to_thread(ctx.search_client.backfill, args.knowledge_base_id, store)
    print(f"Backfilled {sent} chunks into {ctx.search_client.index_name(args.knowledge_base_id)}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    ctx = EngineContext(Settings())
    try:
        if args.command == "search":
            return await _search(ctx, args)
        return await _backfill(ctx, args)
    finally:
        await ctx.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
