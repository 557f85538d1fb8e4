"""Unit tests for the engine context and the command line."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from knowledge_rag import cli
from knowledge_rag.events import ProgressEvents
from knowledge_rag.llm import get_llm
from knowledge_rag.records.models import Document, KnowledgeBase, TextSource


class TestEngineContext:
    def test_directories_live_under_data_dir(self, ctx, settings):
        root = Path(settings.knowledge_data_dir)
        assert ctx.source_dir("kb") == root / "sources" / "kb"
        assert ctx.processed_dir("kb").is_dir()
        assert ctx.vector_path("kb") == root / "vectors" / "kb"

    def test_resource_knowledge_base_uses_bundled_index(self, ctx, tmp_path: Path):
        bundled = tmp_path / "bundled"
        bundled.mkdir()
        (bundled / "index.faiss").write_bytes(b"")
        kb = ctx.records.create(KnowledgeBase(name="docs", resource_path=str(bundled)))

        assert ctx.vector_path(kb.id) == bundled

    def test_resource_knowledge_base_without_index_uses_subdirectory(self, ctx, tmp_path: Path):
        kb = ctx.records.create(KnowledgeBase(name="docs", resource_path=str(tmp_path / "bundled")))
        assert ctx.vector_path(kb.id) == tmp_path / "bundled" / kb.id

    def test_load_store_is_cached(self, ctx):
        async def scenario():
            return await asyncio.gather(ctx.load_store("kb"), ctx.load_store("kb"))

        first, second = asyncio.run(scenario())
        assert first is second

    def test_background_failures_are_logged(self, ctx, caplog):
        async def boom() -> None:
            raise RuntimeError("index unavailable")

        async def scenario() -> None:
            ctx.spawn(boom())
            await ctx.drain()

        asyncio.run(scenario())
        assert "Background task failed" in caplog.text


class TestProgressEvents:
    def test_sync_and_async_subscribers(self):
        events = ProgressEvents()
        seen: list[tuple[str, str]] = []

        async def async_subscriber(kb_id, event_type, payload):
            seen.append(("async", payload["eventType"]))

        events.subscribe(lambda kb_id, event_type, payload: seen.append(("sync", payload["documentId"])))
        unsubscribe = events.subscribe(async_subscriber)
        doc = Document(id="doc-1", knowledge_base_id="kb", source=TextSource(body="x"))

        asyncio.run(events.publish("kb", "change", doc))
        unsubscribe()
        asyncio.run(events.publish("kb", "complete", doc))

        assert seen == [("sync", "doc-1"), ("async", "change"), ("sync", "doc-1")]

    def test_unknown_event_type(self):
        doc = Document(knowledge_base_id="kb", source=TextSource(body="x"))
        with pytest.raises(ValueError, match="Unknown event type"):
            asyncio.run(ProgressEvents().publish("kb", "progress", doc))


class TestGetLlm:
    def test_openai_compatible_endpoint(self, settings):
        llm = get_llm(settings.model_copy(update={"llm_base_url": "http://llm.local/v1", "openai_api_key": ""}))

        assert llm.openai_api_base == "http://llm.local/v1"
        assert llm.openai_api_key.get_secret_value() == "EMPTY"
        assert (llm.temperature, llm.request_timeout, llm.max_retries) == (0.7, 30.0, 1)

    def test_openai_cloud(self, settings):
        llm = get_llm(settings.model_copy(update={"llm_base_url": "", "openai_api_key": "sk-test"}))

        assert llm.openai_api_key.get_secret_value() == "sk-test"


class TestCli:
    def test_parser(self):
        args = cli.build_parser().parse_args(["search", "kb1", "reset password", "--n", "3", "--expand"])
        assert (args.command, args.knowledge_base_id, args.query, args.n, args.expand) == (
            "search",
            "kb1",
            "reset password",
            3,
            True,
        )

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_search_prints_json(self, make_context, capsys):
        ctx = make_context()
        with patch.object(cli, "EngineContext", return_value=ctx):
            assert cli.main(["search", "empty-kb", "hello"]) == 0

        assert json.loads(capsys.readouterr().out) == []

    def test_backfill_requires_search_index(self, make_context):
        ctx = make_context()
        with patch.object(cli, "EngineContext", return_value=ctx):
            assert cli.main(["backfill", "kb1"]) == 1
