"""AI processing pipeline - extraction, decisions, execution, research."""

from capto.processing.decisions import ActionPlan, decide
from capto.processing.executor import ActionExecutor, ExecutionOutcome
from capto.processing.extraction import (
    ContentExtractor,
    ExtractedFields,
    ExtractionSource,
    fallback_extraction,
)
from capto.processing.ledger import ActionLedger, EntryLocks
from capto.processing.llm import (
    LLMProvider,
    LLMProviderBase,
    LLMResult,
    LLMService,
    OllamaLLMProvider,
    OpenAILLMProvider,
    TokenUsage,
    estimate_cost,
)
from capto.processing.pipeline import CancelToken, Orchestrator, ProcessingReport, Timeouts
from capto.processing.queue import ProcessingQueue
from capto.processing.research import ResearchGenerator

__all__ = [
    # Extraction
    "ContentExtractor",
    "ExtractedFields",
    "ExtractionSource",
    "fallback_extraction",
    # Decisions
    "ActionPlan",
    "decide",
    # Execution
    "ActionExecutor",
    "ActionLedger",
    "EntryLocks",
    "ExecutionOutcome",
    # Orchestration
    "CancelToken",
    "Orchestrator",
    "ProcessingQueue",
    "ProcessingReport",
    "Timeouts",
    # Research
    "ResearchGenerator",
    # LLM
    "LLMProvider",
    "LLMProviderBase",
    "LLMResult",
    "LLMService",
    "OllamaLLMProvider",
    "OpenAILLMProvider",
    "TokenUsage",
    "estimate_cost",
]
