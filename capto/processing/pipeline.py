"""Per-entry orchestration: extract, decide, execute, research, persist."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from capto.config import DEFAULT_EXTRACTION_TIMEOUT, DEFAULT_RESEARCH_TIMEOUT
from capto.errors import ActionNotFound, ExtractionFailure
from capto.processing.decisions import decide
from capto.processing.executor import ActionExecutor, ExecutionOutcome
from capto.processing.extraction import ContentExtractor, ExtractedFields, ExtractionSource
from capto.processing.ledger import ActionLedger, EntryLocks
from capto.processing.research import ResearchGenerator
from capto.storage.models import (
    ActionStatus,
    AIAction,
    AIMetadata,
    Entry,
    ProcessingMeta,
    ResearchResults,
)

logger = logging.getLogger(__name__)

# Actions a forced re-run must not replace
_SETTLED = (ActionStatus.EXECUTED, ActionStatus.EXECUTING, ActionStatus.REVERSED)


class CancelToken:
    """Cooperative cancellation threaded through one orchestration run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError("processing cancelled")


@dataclass(frozen=True)
class Timeouts:
    """Per-call limits for the external AI services, in seconds."""

    extraction: float = DEFAULT_EXTRACTION_TIMEOUT
    research: float = DEFAULT_RESEARCH_TIMEOUT


@dataclass
class ProcessingReport:
    """What one orchestration run did."""

    entry_id: str
    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    research: ResearchResults | None = None
    total_cost: float = 0.0
    processing_time_ms: int = 0
    extraction_source: ExtractionSource | None = None
    skipped: bool = False
    error: str | None = None

    @property
    def actions(self) -> list[AIAction]:
        return [outcome.action for outcome in self.outcomes]

    @property
    def failures(self) -> list[ExecutionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class Orchestrator:
    """Runs the processing pipeline for one entry at a time per entry id.

    Every run holds the entry's lock from the first read to the last write.
    A run that fails is recorded on the entry and never raises; only
    cancellation propagates.
    """

    def __init__(
        self,
        ledger: ActionLedger,
        locks: EntryLocks,
        extractor: ContentExtractor,
        executor: ActionExecutor,
        research: ResearchGenerator | None = None,
        timeouts: Timeouts | None = None,
    ):
        self.ledger = ledger
        self.locks = locks
        self.extractor = extractor
        self.executor = executor
        self.research = research
        self.timeouts = timeouts or Timeouts()

    async def process(
        self,
        entry_id: str,
        cancel: CancelToken | None = None,
        force: bool = False,
    ) -> ProcessingReport:
        """Process an entry.

        Raises EntryBusy if a run for the same entry is already active.
        Entries that already carry metadata are skipped unless ``force`` is
        set; a forced run keeps actions that were executed or reversed.
        """
        cancel = cancel or CancelToken()
        async with self.locks.hold(entry_id, wait=False):
            entry = await self.ledger.load(entry_id)
            if entry.ai_metadata is not None and not force:
                logger.debug(f"Entry {entry_id} already processed, skipping")
                return ProcessingReport(entry_id=entry_id, skipped=True)

            started = time.perf_counter()
            try:
                return await self._run(entry, cancel, started)
            except asyncio.CancelledError:
                logger.info(f"Processing of entry {entry_id} cancelled")
                raise
            except Exception as e:
                logger.error(f"Processing entry {entry_id} failed: {e}")
                await self._mark_failed(entry_id, e, started)
                return ProcessingReport(
                    entry_id=entry_id,
                    processing_time_ms=_elapsed_ms(started),
                    error=str(e),
                )

    async def _run(self, entry: Entry, cancel: CancelToken, started: float) -> ProcessingReport:
        logger.info(f"Processing {entry.type.value} entry {entry.id}: {entry.content[:40]!r}")

        fields = await self._extract(entry.content)
        cancel.raise_if_cancelled()
        plan = decide(entry.type, fields, entry.content)

        previous = entry.ai_metadata.actions if entry.ai_metadata else []
        kept = [a for a in previous if a.status in _SETTLED]
        kept_types = {a.type for a in kept}
        new_actions = [a for a in plan.actions if a.type not in kept_types]

        await self.ledger.attach(entry.id, AIMetadata(actions=kept + new_actions))
        outcomes = await self.executor.execute_all(entry.id, new_actions, cancel)

        research: ResearchResults | None = None
        if plan.research:
            cancel.raise_if_cancelled()
            research = await self._research(entry)
            if research is not None:
                await self.ledger.set_research(entry.id, research)

        total_cost = fields.cost + (research.cost if research else 0.0)
        elapsed = _elapsed_ms(started)
        await self.ledger.finish(
            entry.id, ProcessingMeta(total_cost=total_cost, processing_time_ms=elapsed)
        )

        executed = sum(1 for o in outcomes if o.executed)
        logger.info(
            f"Entry {entry.id} processed: {executed}/{len(outcomes)} actions executed, "
            f"research={'yes' if research else 'no'}, cost=${total_cost:.4f}, {elapsed}ms"
        )
        return ProcessingReport(
            entry_id=entry.id,
            outcomes=outcomes,
            research=research,
            total_cost=total_cost,
            processing_time_ms=elapsed,
            extraction_source=fields.source,
        )

    async def _extract(self, text: str) -> ExtractedFields:
        try:
            return await asyncio.wait_for(
                self.extractor.extract(text), self.timeouts.extraction
            )
        except TimeoutError:
            logger.warning(
                f"Extraction timed out after {self.timeouts.extraction}s, using local patterns"
            )
        except ExtractionFailure as e:
            logger.warning(f"Extraction failed, using local patterns: {e}")
        return self.extractor.fallback(text)

    async def _research(self, entry: Entry) -> ResearchResults | None:
        if self.research is None:
            return None
        try:
            return await asyncio.wait_for(
                self.research.generate(entry.content, entry.type), self.timeouts.research
            )
        except TimeoutError:
            logger.warning(f"Research for entry {entry.id} timed out")
        except Exception as e:
            logger.warning(f"Research for entry {entry.id} failed: {e}")
        return None

    async def _mark_failed(self, entry_id: str, error: Exception, started: float) -> None:
        try:
            entry = await self.ledger.load(entry_id)
            if entry.ai_metadata is None:
                await self.ledger.attach(entry_id, AIMetadata())
            await self.ledger.finish(
                entry_id,
                ProcessingMeta(processing_time_ms=_elapsed_ms(started), error=str(error)),
            )
        except Exception as e:
            logger.error(f"Could not record failure for entry {entry_id}: {e}")

    # ============== User-invoked operations ==============

    async def regenerate_research(self, entry_id: str) -> ResearchResults | None:
        """Replace the entry's research summary. Returns None if generation failed."""
        async with self.locks.hold(entry_id):
            entry = await self.ledger.load(entry_id)
            research = await self._research(entry)
            if research is not None:
                await self.ledger.set_research(entry_id, research)
            return research

    async def execute_action(self, entry_id: str, action_id: str) -> ExecutionOutcome:
        """Execute or retry one action on the user's request."""
        async with self.locks.hold(entry_id):
            action = await self._find_action(entry_id, action_id)
            return await self.executor.execute(entry_id, action, retry=True)

    async def reverse_action(self, entry_id: str, action_id: str) -> ExecutionOutcome:
        """Undo one executed action on the user's request."""
        async with self.locks.hold(entry_id):
            action = await self._find_action(entry_id, action_id)
            return await self.executor.reverse(entry_id, action)

    async def _find_action(self, entry_id: str, action_id: str) -> AIAction:
        entry = await self.ledger.load(entry_id)
        action = entry.ai_metadata.find_action(action_id) if entry.ai_metadata else None
        if action is None:
            raise ActionNotFound(f"Entry {entry_id} has no action {action_id}")
        return action


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
