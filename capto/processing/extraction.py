"""Structured field extraction from captured text using LLM."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from capto.errors import ExtractionFailure
from capto.processing import patterns
from capto.processing.llm import LLMService, estimate_cost

logger = logging.getLogger(__name__)

# Seconds an extraction stays cached
CACHE_TTL = 300.0

EXTRACTION_SYSTEM_PROMPT = """\
You extract structured data from short notes a user captured while typing.

Capture every actionable detail, even when phrased informally or with typos:
1. Phone numbers (any format, partials included)
2. Email addresses
3. People names or references (nicknames, initials)
4. Date/time information (normalize to ISO 8601 when possible; resolve relative terms cautiously)
5. Location hints (addresses, venues, neighborhoods)
6. Action intents (call, follow up, schedule, buy, research, etc.)
7. URLs or digital resources

Use null when evidence is weak. Do not add extra keys."""

EXTRACTION_USER_PROMPT = """\
Extract structured data from the following note.

NOTE:
{content}

Respond with a JSON object with exactly these keys:
- "phone": string or null
- "email": string or null
- "name": string or null (the person the note is about)
- "time": string or null (the date/time mentioned, as written or ISO 8601)
- "location": string or null
- "action_intent": string or null (a single verb such as "call" or "buy")
- "urls": array of strings

Example response:
{{"phone": null, "email": null, "name": "Anna", "time": "tomorrow 3pm",
  "location": null, "action_intent": "call", "urls": []}}"""


class ExtractionSource(str, Enum):
    """Where a set of extracted fields came from."""

    LLM = "llm"
    PATTERNS = "patterns"


@dataclass
class ExtractedFields:
    """Structured information found in an entry's text."""

    phone: str | None = None
    email: str | None = None
    name: str | None = None
    time: str | None = None
    resolved_time: datetime | None = None
    location: str | None = None
    action_intent: str | None = None
    urls: list[str] = field(default_factory=list)
    source: ExtractionSource = ExtractionSource.PATTERNS
    cost: float = 0.0

    @property
    def has_contact_info(self) -> bool:
        return self.phone is not None or self.email is not None


def fallback_extraction(text: str, now: datetime) -> ExtractedFields:
    """Cheap local extraction used when the LLM is unavailable or fails."""
    phone = patterns.extract_phone(text)
    email = patterns.extract_email(text)
    return ExtractedFields(
        phone=phone,
        email=email,
        name=patterns.extract_name(text) if (phone or email) else None,
        time=patterns.extract_time_phrase(text),
        resolved_time=patterns.resolve_datetime(text, now),
        location=patterns.extract_address(text),
        urls=patterns.extract_urls(text),
        source=ExtractionSource.PATTERNS,
    )


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ExtractionFailure(f"Field {key!r} is not a string: {value!r}")
    value = value.strip()
    if not value or value.lower() in ("null", "none", "n/a"):
        return None
    return value


@dataclass
class _CachedExtraction:
    fields: ExtractedFields
    stored_at: float


class ContentExtractor:
    """Turns entry text into ExtractedFields.

    Asks the LLM for strict JSON and falls back to local pattern matching on
    any failure. Results are cached by normalised text for five minutes.
    """

    def __init__(
        self,
        llm_service: LLMService | None = None,
        *,
        cache_ttl: float = CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ):
        self._llm_service = llm_service
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._now = now or (lambda: datetime.now().astimezone())
        self._cache: dict[str, _CachedExtraction] = {}

    async def extract(self, text: str) -> ExtractedFields:
        """Extract structured fields from text."""
        key = text.strip().lower()
        cached = self._cache.get(key)
        if cached is not None and self._clock() - cached.stored_at <= self.cache_ttl:
            logger.debug("Extraction cache hit")
            return cached.fields

        if self._llm_service is None:
            return self.fallback(text)

        try:
            fields = await self._extract_with_llm(self._llm_service, text)
        except ExtractionFailure as e:
            logger.warning(f"LLM extraction failed, using local patterns: {e}")
            return self.fallback(text)

        self._cache[key] = _CachedExtraction(fields=fields, stored_at=self._clock())
        return fields

    def fallback(self, text: str) -> ExtractedFields:
        return fallback_extraction(text, self._now())

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _extract_with_llm(self, llm_service: LLMService, text: str) -> ExtractedFields:
        try:
            json_result, llm_result = await llm_service.generate_json(
                EXTRACTION_USER_PROMPT.format(content=text),
                system_prompt=EXTRACTION_SYSTEM_PROMPT,
                temperature=0.0,
            )
        except Exception as e:
            raise ExtractionFailure(str(e)) from e

        fields = self._parse_response(json_result, text)
        fields.cost = estimate_cost(llm_result)
        logger.info(
            f"Extracted fields with {llm_result.model}: "
            f"contact={fields.has_contact_info} time={fields.time is not None} "
            f"location={fields.location is not None}"
        )
        return fields

    def _parse_response(self, data: Any, text: str) -> ExtractedFields:
        if not isinstance(data, dict):
            raise ExtractionFailure(f"Expected a JSON object, got {type(data).__name__}")

        raw_urls = data.get("urls") or []
        if not isinstance(raw_urls, list):
            raise ExtractionFailure("Field 'urls' is not an array")

        time_phrase = _optional_str(data, "time")
        now = self._now()
        resolved = None
        if time_phrase is not None:
            resolved = patterns.resolve_datetime(time_phrase, now) or patterns.resolve_datetime(
                text, now
            )

        return ExtractedFields(
            phone=_optional_str(data, "phone"),
            email=_optional_str(data, "email"),
            name=_optional_str(data, "name"),
            time=time_phrase,
            resolved_time=resolved,
            location=_optional_str(data, "location"),
            action_intent=_optional_str(data, "action_intent"),
            urls=[str(u) for u in raw_urls if u],
            source=ExtractionSource.LLM,
        )
