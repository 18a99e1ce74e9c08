"""Tests for application wiring and research generation."""

import tempfile
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock

from capto.app import CaptoApp
from capto.capture import CaptureContext, CaptureResult, FinalizeReason
from capto.config import Settings
from capto.processing import (
    LLMProvider,
    LLMResult,
    LLMService,
    ResearchGenerator,
    TokenUsage,
)
from capto.storage import EntryType
from capto.tools import DryRunToolService, HttpToolService


class TestCaptoApp:
    """Tests for building and running the service graph."""

    def test_dry_run_without_tool_url(self):
        capto = CaptoApp.from_settings(Settings(ai_enabled=False))

        assert isinstance(capto.tools, DryRunToolService)
        assert capto.orchestrator.research is None
        assert capto.entries.queue is capto.queue

    async def test_http_tools_with_tool_url(self):
        capto = CaptoApp.from_settings(
            Settings(tool_url="http://localhost:7777", ai_enabled=False)
        )

        assert isinstance(capto.tools, HttpToolService)
        assert capto.tools.base_url == "http://localhost:7777"
        await capto.tools.close()

    def test_llm_service_is_shared(self):
        llm = LLMService(provider=LLMProvider.OLLAMA)
        capto = CaptoApp.from_settings(Settings(), llm_service=llm)

        assert capto.orchestrator.research is not None

    async def test_capture_is_processed_in_background(self):
        """Test a created entry flows through the queue to executed actions."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = Settings(db_path=Path(tmpdir) / "capto.db", ai_enabled=False)

            async with CaptoApp.from_settings(settings) as capto:
                now = datetime.now(UTC)
                entry = await capto.entries.create(
                    CaptureResult(
                        trigger="///",
                        entry_type=EntryType.TODO,
                        content="Buy milk",
                        started_at=now,
                        ended_at=now,
                        context=CaptureContext(app_name="Notes"),
                        reason=FinalizeReason.ENTER,
                    )
                )
                assert entry is not None
                await capto.queue.join()
                stored = await capto.store.get(entry.id)

            assert not capto.queue.is_running()
            assert stored is not None and stored.ai_metadata is not None
            assert stored.ai_metadata.executed_actions[0].data.title == "Buy milk"
            assert capto.queue.stats.total_processed == 1


class TestResearchGenerator:
    """Tests for research summaries."""

    async def test_generate(self):
        llm = AsyncMock(spec=LLMService)
        llm.generate.return_value = LLMResult(
            content="  # Milk\n\nBuy it at the market.\n",
            model="gpt-4o-mini",
            provider=LLMProvider.OPENAI,
            usage=TokenUsage(prompt_tokens=200, completion_tokens=300),
        )
        generator = ResearchGenerator(llm)

        results = await generator.generate("Buy milk", EntryType.TODO)

        assert results.content == "# Milk\n\nBuy it at the market."
        assert results.cost > 0
        prompt = llm.generate.call_args.args[0]
        assert "Research this TODO" in prompt
        assert "Buy milk" in prompt

    async def test_piece_prompt(self):
        llm = AsyncMock(spec=LLMService)
        llm.generate.return_value = LLMResult(
            content="notes", model="llama3.2", provider=LLMProvider.OLLAMA
        )

        results = await ResearchGenerator(llm).generate("Sparse attention", EntryType.PIECE)

        assert results.cost == 0.0
        assert "Research this topic" in llm.generate.call_args.args[0]
