"""Runtime settings loaded from environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DB_PATH = Path("data/capto.db")
DEFAULT_TRIGGERS_PATH = Path("data/triggers.json")

# Bounds cost and rate against the AI service, not throughput.
DEFAULT_MAX_CONCURRENT = 5

DEFAULT_EXTRACTION_TIMEOUT = 20.0
DEFAULT_RESEARCH_TIMEOUT = 60.0
DEFAULT_TOOL_TIMEOUT = 15.0

_OFF_VALUES = ("0", "off", "false", "no")


def _env_float(name: str, default: float) -> float:
    """Read a positive float from the environment, falling back to default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


@dataclass
class Settings:
    """Capto runtime settings."""

    db_path: Path = DEFAULT_DB_PATH
    triggers_path: Path = DEFAULT_TRIGGERS_PATH
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    extraction_timeout: float = DEFAULT_EXTRACTION_TIMEOUT
    research_timeout: float = DEFAULT_RESEARCH_TIMEOUT
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    tool_url: str | None = None
    ai_enabled: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from CAPTO_* environment variables."""
        return cls(
            db_path=Path(os.getenv("CAPTO_DB_PATH", str(DEFAULT_DB_PATH))),
            triggers_path=Path(os.getenv("CAPTO_TRIGGERS_PATH", str(DEFAULT_TRIGGERS_PATH))),
            max_concurrent=_env_int("CAPTO_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT),
            extraction_timeout=_env_float(
                "CAPTO_EXTRACTION_TIMEOUT", DEFAULT_EXTRACTION_TIMEOUT
            ),
            research_timeout=_env_float("CAPTO_RESEARCH_TIMEOUT", DEFAULT_RESEARCH_TIMEOUT),
            tool_timeout=_env_float("CAPTO_TOOL_TIMEOUT", DEFAULT_TOOL_TIMEOUT),
            tool_url=os.getenv("CAPTO_TOOL_URL") or None,
            ai_enabled=os.getenv("CAPTO_AI", "on").strip().lower() not in _OFF_VALUES,
            log_level=os.getenv("CAPTO_LOG_LEVEL", "INFO").upper(),
        )
