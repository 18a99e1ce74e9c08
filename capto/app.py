"""Application wiring: build every service once and own their lifecycle."""

from __future__ import annotations

import logging
from types import TracebackType

from capto.capture.sink import EntryCreator
from capto.config import Settings
from capto.processing.executor import ActionExecutor
from capto.processing.extraction import ContentExtractor
from capto.processing.ledger import ActionLedger, EntryLocks
from capto.processing.llm import LLMService
from capto.processing.pipeline import Orchestrator, Timeouts
from capto.processing.queue import ProcessingQueue
from capto.processing.research import ResearchGenerator
from capto.storage.database import EntryStore
from capto.tools.base import ToolService
from capto.tools.dryrun import DryRunToolService
from capto.tools.http import HttpToolService

logger = logging.getLogger(__name__)


class CaptoApp:
    """The explicitly constructed service graph."""

    def __init__(
        self,
        settings: Settings,
        store: EntryStore,
        tools: ToolService,
        orchestrator: Orchestrator,
        queue: ProcessingQueue,
        entries: EntryCreator,
    ):
        self.settings = settings
        self.store = store
        self.tools = tools
        self.orchestrator = orchestrator
        self.queue = queue
        self.entries = entries

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        tools: ToolService | None = None,
        llm_service: LLMService | None = None,
    ) -> CaptoApp:
        """Build the application. Tools and LLM default from settings."""
        store = EntryStore(settings.db_path)

        if tools is None:
            if settings.tool_url:
                tools = HttpToolService(settings.tool_url, timeout=settings.tool_timeout)
            else:
                logger.info("No tool bridge configured, actions run in dry-run mode")
                tools = DryRunToolService()

        if llm_service is None and settings.ai_enabled:
            llm_service = LLMService()

        locks = EntryLocks()
        ledger = ActionLedger(store, locks)
        orchestrator = Orchestrator(
            ledger=ledger,
            locks=locks,
            extractor=ContentExtractor(llm_service),
            executor=ActionExecutor(ledger, tools, timeout=settings.tool_timeout),
            research=ResearchGenerator(llm_service) if llm_service is not None else None,
            timeouts=Timeouts(
                extraction=settings.extraction_timeout,
                research=settings.research_timeout,
            ),
        )
        queue = ProcessingQueue(orchestrator, store, max_concurrent=settings.max_concurrent)
        return cls(
            settings=settings,
            store=store,
            tools=tools,
            orchestrator=orchestrator,
            queue=queue,
            entries=EntryCreator(store, queue),
        )

    async def start(self) -> None:
        await self.store.initialize()
        await self.queue.start()

    async def stop(self, grace: float = 5.0) -> None:
        await self.queue.stop(grace)
        await self.tools.close()

    async def __aenter__(self) -> CaptoApp:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
