"""Capture layer - keystroke input, trigger detection, entry creation."""

from capto.capture.input import (
    InputSource,
    KeyEvent,
    KeyKind,
    StreamInputSource,
    key_event_from_char,
    key_events_from_text,
)
from capto.capture.monitor import (
    CaptureContext,
    CaptureResult,
    FinalizeReason,
    MonitorRunner,
    MonitorState,
    TriggerMonitor,
)
from capto.capture.sink import EntryCreator
from capto.capture.triggers import (
    TriggerConfigWatcher,
    TriggerConfiguration,
    TriggerRule,
    clean_content,
    detect_entry_type,
    load_configuration,
    save_configuration,
)

__all__ = [
    # Input
    "InputSource",
    "KeyEvent",
    "KeyKind",
    "StreamInputSource",
    "key_event_from_char",
    "key_events_from_text",
    # Monitor
    "CaptureContext",
    "CaptureResult",
    "FinalizeReason",
    "MonitorRunner",
    "MonitorState",
    "TriggerMonitor",
    # Entries
    "EntryCreator",
    # Configuration
    "TriggerConfigWatcher",
    "TriggerConfiguration",
    "TriggerRule",
    "clean_content",
    "detect_entry_type",
    "load_configuration",
    "save_configuration",
]
