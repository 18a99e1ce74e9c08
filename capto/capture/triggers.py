"""Trigger configuration: which sequences start a capture and how it ends."""

import json
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from capto.storage.models import EntryType

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 3.0

# Inline prefixes that override the trigger's entry type
TODO_PREFIXES = ("todo:", "t:", "待办:", "任务:")
PIECE_PREFIXES = ("idea:", "i:", "piece:", "p:", "想法:", "思考:", "片段:")


class TriggerRule(BaseModel):
    """A trigger sequence mapped to the entry type it creates."""

    trigger: str = Field(..., min_length=1)
    entry_type: EntryType
    enabled: bool = True

    @field_validator("trigger")
    @classmethod
    def _no_whitespace(cls, value: str) -> str:
        if any(ch.isspace() for ch in value):
            raise ValueError("trigger must not contain whitespace")
        return value


class TriggerConfiguration(BaseModel):
    """Read-only input to the trigger monitor."""

    triggers: list[TriggerRule] = Field(default_factory=list)
    terminator: str | None = Field(
        None, description="Character that ends a capture; Enter always does"
    )
    idle_timeout: float = Field(DEFAULT_IDLE_TIMEOUT, gt=0)

    @field_validator("terminator")
    @classmethod
    def _single_character(cls, value: str | None) -> str | None:
        if value is not None and len(value) != 1:
            raise ValueError("terminator must be a single character")
        return value

    @model_validator(mode="after")
    def _unique_triggers(self) -> "TriggerConfiguration":
        seen: set[str] = set()
        for rule in self.triggers:
            if rule.trigger in seen:
                raise ValueError(f"duplicate trigger: {rule.trigger}")
            seen.add(rule.trigger)
        return self

    @classmethod
    def default(cls) -> "TriggerConfiguration":
        return cls(
            triggers=[
                TriggerRule(trigger="///", entry_type=EntryType.TODO),
                TriggerRule(trigger=",,,", entry_type=EntryType.PIECE),
                TriggerRule(trigger="，，，", entry_type=EntryType.PIECE),
            ]
        )

    @property
    def enabled_triggers(self) -> dict[str, EntryType]:
        return {rule.trigger: rule.entry_type for rule in self.triggers if rule.enabled}

    @property
    def longest_trigger(self) -> int:
        return max((len(t) for t in self.enabled_triggers), default=0)

    def entry_type_for(self, trigger: str) -> EntryType | None:
        return self.enabled_triggers.get(trigger)


def detect_entry_type(content: str, default: EntryType) -> EntryType:
    """Pick the entry type: an inline prefix wins over the trigger's type."""
    stripped = content.strip()
    if stripped.startswith(TODO_PREFIXES):
        return EntryType.TODO
    if stripped.startswith(PIECE_PREFIXES):
        return EntryType.PIECE
    return default


def clean_content(content: str) -> str:
    """Strip whitespace and a single inline type prefix."""
    cleaned = content.strip()
    for prefix in TODO_PREFIXES + PIECE_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    return cleaned.strip()


def load_configuration(path: Path | str) -> TriggerConfiguration:
    """Load a configuration file, falling back to defaults if unusable."""
    path = Path(path)
    if not path.exists():
        return TriggerConfiguration.default()
    try:
        return TriggerConfiguration.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Invalid trigger configuration {path}, using defaults: {e}")
        return TriggerConfiguration.default()


def save_configuration(path: Path | str, configuration: TriggerConfiguration) -> None:
    """Write a configuration file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(configuration.model_dump_json(indent=2))


class _ConfigFileHandler(FileSystemEventHandler):
    """Reload the configuration when its file changes."""

    def __init__(self, path: Path, on_change: Callable[[TriggerConfiguration], None]):
        super().__init__()
        self.path = path.resolve()
        self.on_change = on_change

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src_path = event.src_path
        if isinstance(src_path, bytes):
            src_path = src_path.decode("utf-8")
        if Path(src_path).resolve() != self.path:
            return

        logger.info(f"Trigger configuration changed: {self.path.name}")
        self.on_change(load_configuration(self.path))

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)


class TriggerConfigWatcher:
    """Watch the trigger configuration file and push reloads to a callback."""

    def __init__(
        self,
        path: Path | str,
        on_change: Callable[[TriggerConfiguration], None],
    ):
        self.path = Path(path)
        self._handler = _ConfigFileHandler(self.path, on_change)
        self._observer: BaseObserver | None = None

    def start(self) -> None:
        """Start watching the configuration file's directory."""
        if self._observer is not None:
            return

        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        self._observer = Observer()
        self._observer.schedule(self._handler, str(directory), recursive=False)
        self._observer.start()
        logger.info(f"Watching trigger configuration: {self.path}")

    def stop(self) -> None:
        """Stop watching."""
        if self._observer is None:
            return

        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        logger.info("Stopped watching trigger configuration")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def __enter__(self) -> "TriggerConfigWatcher":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.stop()
