"""Markdown research summaries for captured entries."""

from __future__ import annotations

import logging
import time

from capto.processing.llm import LLMService, estimate_cost
from capto.storage.models import EntryType, ResearchResults

logger = logging.getLogger(__name__)

RESEARCH_MAX_TOKENS = 500

RESEARCH_SYSTEM_PROMPT = """\
You write short, practical research notes in markdown for a personal
productivity tool. Use clear sections. Limit yourself to 300 words."""

TODO_RESEARCH_PROMPT = """\
Research this TODO and create a helpful markdown guide: "{content}"

Provide practical information including:
- Best practices or tips
- Tools, apps, or resources that could help
- Time-saving strategies
- Cost estimates if applicable

Focus on actionable advice that helps complete the task efficiently."""

PIECE_RESEARCH_PROMPT = """\
Research this topic and create a helpful markdown summary: "{content}"

Provide relevant information including:
- Context or background information
- Related concepts or connections
- Useful resources for learning more
- Practical applications

Focus on educational value and practical insights."""


class ResearchGenerator:
    """Generate a research summary for an entry."""

    def __init__(self, llm_service: LLMService):
        self._llm_service = llm_service

    async def generate(self, text: str, entry_type: EntryType) -> ResearchResults:
        """Generate research for text.

        Raises whatever the LLM provider raises; the caller decides whether a
        missing summary is acceptable.
        """
        template = TODO_RESEARCH_PROMPT if entry_type == EntryType.TODO else PIECE_RESEARCH_PROMPT

        started = time.perf_counter()
        result = await self._llm_service.generate(
            template.format(content=text),
            system_prompt=RESEARCH_SYSTEM_PROMPT,
            temperature=0.3,
            max_tokens=RESEARCH_MAX_TOKENS,
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        logger.info(f"Generated {entry_type.value} research with {result.model} in {elapsed_ms}ms")
        return ResearchResults(
            content=result.content.strip(),
            cost=estimate_cost(result),
            processing_time_ms=elapsed_ms,
        )
