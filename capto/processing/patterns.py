"""Local pattern matching for contact, time and location data.

Used when the LLM extractor is unavailable and to resolve extracted time
phrases into concrete datetimes. Everything here is pure and synchronous.
"""

import re
from datetime import datetime, timedelta

from dateutil import parser as dateutil_parser

PHONE_PATTERN = re.compile(r"(\+?\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
URL_PATTERN = re.compile(r"https?://\S+")

TIME_KEYWORDS = (
    "tomorrow", "today", "tonight", "yesterday",
    "morning", "afternoon", "evening", "noon", "o'clock",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "next week", "this week", "last week",
    "next month", "this month", "last month",
    "january", "february", "march", "april", "june",
    "july", "august", "september", "october", "november", "december",
)
_TIME_KEYWORD_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in TIME_KEYWORDS) + r")\b", re.IGNORECASE
)

TIME_FORMATS = (
    re.compile(r"\b\d{1,2}:\d{2}\s*(am|pm)?\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}\s*(am|pm)\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
)

ADDRESS_PATTERN = re.compile(
    r"\b\d+\s+(\w+\s+)+?(street|st|avenue|ave|road|rd|drive|dr|boulevard|blvd"
    r"|lane|ln|way|court|ct|place|pl)\b\.?",
    re.IGNORECASE,
)
ZIP_PATTERN = re.compile(r"\b\d{5}(-\d{4})?\b")

_PM_PATTERN = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*pm\b", re.IGNORECASE)
_AM_PATTERN = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*am\b", re.IGNORECASE)
_24H_PATTERN = re.compile(r"\b(\d{1,2}):(\d{2})\b")

_ABSOLUTE_DATES = (
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(
        r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+"
        r"\d{1,2}(st|nd|rd|th)?\b",
        re.IGNORECASE,
    ),
)

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}
_WEEKDAY_PATTERN = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\b", re.IGNORECASE)

_NAME_WORD = re.compile(r"\b[A-Z][a-z]+\b")

# Capitalised at the start of a note but never part of a name
INTENT_WORDS = frozenset(
    {"call", "text", "email", "mail", "meet", "ask", "buy", "pay", "send", "visit",
     "remind", "ping", "contact", "message", "book", "schedule", "follow", "the", "at"}
)

DEFAULT_HOUR = 9
TONIGHT_HOUR = 20


# ============== Contact data ==============


def extract_phone(text: str) -> str | None:
    match = PHONE_PATTERN.search(text)
    return match.group(0).strip() if match else None


def extract_email(text: str) -> str | None:
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


def extract_urls(text: str) -> list[str]:
    return URL_PATTERN.findall(text)


def extract_name(text: str) -> str | None:
    """Capitalised words left over once contact data and time words are removed."""
    remainder = text
    for pattern in (URL_PATTERN, EMAIL_PATTERN, PHONE_PATTERN):
        remainder = pattern.sub(" ", remainder)

    words = [
        word
        for word in _NAME_WORD.findall(remainder)
        if not _TIME_KEYWORD_PATTERN.fullmatch(word) and word.lower() not in INTENT_WORDS
    ]
    return " ".join(words) if words else None


def has_contact_info(text: str) -> bool:
    return extract_phone(text) is not None or extract_email(text) is not None


# ============== Time ==============


def contains_time_keywords(text: str) -> bool:
    return _TIME_KEYWORD_PATTERN.search(text) is not None


def contains_time_formats(text: str) -> bool:
    return any(pattern.search(text) for pattern in TIME_FORMATS)


def contains_date_or_time(text: str) -> bool:
    return contains_time_keywords(text) or contains_time_formats(text)


def extract_time_phrase(text: str) -> str | None:
    """Return the first time keyword or time format found in the text."""
    for pattern in TIME_FORMATS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    match = _TIME_KEYWORD_PATTERN.search(text)
    return match.group(0) if match else None


def extract_time(text: str) -> tuple[int, int] | None:
    """Find a clock time: 3pm, 3:30 pm, 11am or 15:00."""
    match = _PM_PATTERN.search(text)
    if match:
        hour = int(match.group(1))
        if hour != 12:
            hour += 12
        if hour < 24:
            return hour, int(match.group(2) or 0)

    match = _AM_PATTERN.search(text)
    if match:
        hour = int(match.group(1))
        if hour == 12:
            hour = 0
        if hour < 24:
            return hour, int(match.group(2) or 0)

    match = _24H_PATTERN.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour < 24 and minute < 60:
            return hour, minute
    return None


def _absolute_date(text: str, now: datetime) -> datetime | None:
    for pattern in _ABSOLUTE_DATES:
        match = pattern.search(text)
        if match is None:
            continue
        try:
            return dateutil_parser.parse(match.group(0), default=now)
        except (ValueError, OverflowError):
            continue
    return None


def _next_weekday(now: datetime, weekday: int) -> datetime:
    days_ahead = weekday - now.weekday()
    if days_ahead <= 0:
        days_ahead += 7
    return now + timedelta(days=days_ahead)


def resolve_datetime(text: str, now: datetime) -> datetime | None:
    """Resolve the date/time a text refers to, relative to ``now``.

    Returns None when the text carries no date or time information. A
    relative or absolute day without a clock time lands on 09:00 and a clock time
    with no day is taken as today. Vague phrases such as "this afternoon" also
    resolve to None.
    """
    if not contains_date_or_time(text):
        return None

    lowered = text.lower()
    default_hour: int | None = DEFAULT_HOUR
    weekday = _WEEKDAY_PATTERN.search(lowered)

    day: datetime | None
    if "tomorrow" in lowered:
        day = now + timedelta(days=1)
    elif "next week" in lowered:
        day = now + timedelta(weeks=1)
    elif weekday is not None:
        day = _next_weekday(now, WEEKDAYS[weekday.group(1)])
    elif "tonight" in lowered:
        day = now
        default_hour = TONIGHT_HOUR
    elif "today" in lowered:
        day = now
        default_hour = None
    else:
        day = _absolute_date(text, now)

    clock = extract_time(text)
    if clock is not None:
        hour, minute = clock
        return (day or now).replace(hour=hour, minute=minute, second=0, microsecond=0)
    if day is None:
        return None
    if default_hour is None:
        return day
    return day.replace(hour=default_hour, minute=0, second=0, microsecond=0)


# ============== Location ==============


def extract_address(text: str) -> str | None:
    match = ADDRESS_PATTERN.search(text)
    return match.group(0).strip() if match else None


def contains_address(text: str) -> bool:
    return ADDRESS_PATTERN.search(text) is not None or ZIP_PATTERN.search(text) is not None


# ============== Classification ==============


def is_raw_data(text: str) -> bool:
    """True if the text is a bare phone number, email or number with no context."""
    trimmed = text.strip()
    if not trimmed:
        return False
    if PHONE_PATTERN.search(trimmed) and len(trimmed) < 20:
        return True
    if EMAIL_PATTERN.search(trimmed) and len(trimmed) < 50:
        return True
    return all(ch.isdigit() or ch.isspace() or ch in "-.+()" for ch in trimmed)
