"""Trigger detection: turn a keystroke stream into capture events.

The monitor is a small state machine::

    Idle --trigger--> Capturing --Enter | terminator | idle timeout--> Finalizing --> Idle
      \\                  ^
       +--> Matching -----+   (a shorter trigger matched, a longer one may follow)

While idle only a rolling buffer as long as the longest trigger is kept, so
overflow just drops the oldest characters. Captured content is never
truncated. Triggers typed while capturing are ordinary content.
"""

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from capto.capture.input import InputSource, KeyEvent, KeyKind
from capto.capture.triggers import TriggerConfiguration
from capto.storage.models import EntryType

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MonitorState(str, Enum):
    IDLE = "idle"
    MATCHING = "matching"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"


class FinalizeReason(str, Enum):
    ENTER = "enter"
    TERMINATOR = "terminator"
    IDLE_TIMEOUT = "idle_timeout"


@dataclass(frozen=True)
class CaptureContext:
    """Where the capture was typed."""

    app_name: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class CaptureResult:
    """A finished capture, consumed once to create an entry."""

    trigger: str
    entry_type: EntryType
    content: str
    started_at: datetime
    ended_at: datetime
    context: CaptureContext
    reason: FinalizeReason


class TriggerMonitor:
    """Keystroke state machine. Not thread-safe: drive it from one thread."""

    def __init__(
        self,
        configuration: TriggerConfiguration | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ):
        self._config = configuration or TriggerConfiguration.default()
        self._pending_config: TriggerConfiguration | None = None
        self._clock = clock
        self._now = now

        self._state = MonitorState.IDLE
        self._buffer: deque[str] = deque(maxlen=max(self._config.longest_trigger, 1))
        self._last_input = clock()

        # Matching
        self._candidate: str | None = None
        self._held: list[str] = []

        # Capturing
        self._trigger: str | None = None
        self._content: list[str] = []
        self._started_at: datetime | None = None
        self._context = CaptureContext()

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def configuration(self) -> TriggerConfiguration:
        return self._config

    @property
    def buffer(self) -> str:
        """The pre-trigger rolling buffer."""
        return "".join(self._buffer)

    def update_configuration(self, configuration: TriggerConfiguration) -> None:
        """Use a new configuration from the next capture cycle on."""
        if self._state == MonitorState.IDLE:
            self._apply_configuration(configuration)
        else:
            logger.debug("Capture in progress, staging new trigger configuration")
            self._pending_config = configuration

    def feed(self, event: KeyEvent) -> list[CaptureResult]:
        """Process one key event and return any captures it finished."""
        results: list[CaptureResult] = []

        expired = self.tick()
        if expired is not None:
            results.append(expired)
        self._last_input = self._clock()

        if event.kind == KeyKind.CHAR:
            for char in event.char or "":
                result = self._feed_char(char, event)
                if result is not None:
                    results.append(result)
            return results

        if self._state == MonitorState.CAPTURING:
            result = self._feed_control(event)
            if result is not None:
                results.append(result)
            return results

        # Control keys outside a capture
        if event.kind == KeyKind.BACKSPACE and self._buffer:
            self._buffer.pop()
            self._clear_candidate()
            self._state = MonitorState.IDLE
        elif event.kind in (KeyKind.ENTER, KeyKind.ESCAPE):
            self._reset()
        return results

    def tick(self) -> CaptureResult | None:
        """Check the idle timer; finalize a capture that has gone quiet."""
        if self._state not in (MonitorState.MATCHING, MonitorState.CAPTURING):
            return None
        if self._clock() - self._last_input < self._config.idle_timeout:
            return None

        if self._state == MonitorState.MATCHING:
            # Nothing followed the trigger, the capture would be empty
            self._reset()
            return None
        return self._finalize(FinalizeReason.IDLE_TIMEOUT)

    # ============== Idle / Matching ==============

    def _feed_char(self, char: str, event: KeyEvent) -> CaptureResult | None:
        if self._state == MonitorState.CAPTURING:
            return self._capture_char(char)

        self._buffer.append(char)
        text = self.buffer
        matched = self._longest_match(text)

        if self._state == MonitorState.IDLE:
            if matched is not None:
                self._on_match(matched, text, event)
            return None

        # Matching: a candidate trigger is waiting for a longer one
        candidate = self._candidate
        if candidate is None:
            raise RuntimeError("Matching without a candidate trigger")
        if matched is not None and len(matched) > len(candidate):
            self._on_match(matched, text, event)
            return None

        self._held.append(char)
        if self._can_extend(text, len(candidate) + len(self._held)):
            return None

        held = list(self._held)
        self._begin_capture(candidate)
        for pending in held:
            result = self._capture_char(pending)
            if result is not None:
                return result
        return None

    def _on_match(self, matched: str, text: str, event: KeyEvent) -> None:
        self._candidate = matched
        self._held = []
        self._started_at = self._now()
        self._context = CaptureContext(app_name=event.app_name, url=event.url)

        if self._can_extend(text, len(matched)):
            self._state = MonitorState.MATCHING
            logger.debug(f"Trigger {matched!r} matched, waiting for a longer one")
        else:
            self._begin_capture(matched)

    def _longest_match(self, text: str) -> str | None:
        best: str | None = None
        for trigger in self._config.enabled_triggers:
            if text.endswith(trigger) and (best is None or len(trigger) > len(best)):
                best = trigger
        return best

    def _can_extend(self, text: str, covered: int) -> bool:
        """True if a longer trigger could still complete over the last chars."""
        for trigger in self._config.enabled_triggers:
            if len(trigger) <= covered:
                continue
            for size in range(covered, len(trigger)):
                if size <= len(text) and text.endswith(trigger[:size]):
                    return True
        return False

    def _clear_candidate(self) -> None:
        self._candidate = None
        self._held = []

    # ============== Capturing ==============

    def _begin_capture(self, trigger: str) -> None:
        self._state = MonitorState.CAPTURING
        self._trigger = trigger
        self._content = []
        if self._started_at is None:
            self._started_at = self._now()
        self._buffer.clear()
        self._clear_candidate()
        logger.debug(f"Capture started with trigger {trigger!r}")

    def _capture_char(self, char: str) -> CaptureResult | None:
        terminator = self._config.terminator
        if terminator is not None and char == terminator:
            return self._finalize(FinalizeReason.TERMINATOR)
        self._content.append(char)
        return None

    def _feed_control(self, event: KeyEvent) -> CaptureResult | None:
        if event.kind == KeyKind.ENTER:
            return self._finalize(FinalizeReason.ENTER)
        if event.kind == KeyKind.BACKSPACE:
            if self._content:
                self._content.pop()
            return None
        if event.kind == KeyKind.ESCAPE:
            logger.debug("Capture abandoned")
            self._reset()
        return None

    def _finalize(self, reason: FinalizeReason) -> CaptureResult | None:
        self._state = MonitorState.FINALIZING
        trigger = self._trigger or ""
        content = "".join(self._content).strip()

        result: CaptureResult | None = None
        if content:
            result = CaptureResult(
                trigger=trigger,
                entry_type=self._config.entry_type_for(trigger) or EntryType.TODO,
                content=content,
                started_at=self._started_at or self._now(),
                ended_at=self._now(),
                context=self._context,
                reason=reason,
            )
            logger.info(f"Captured {len(content)} chars via {trigger!r} ({reason.value})")
        else:
            logger.debug("Empty capture discarded")

        self._reset()
        return result

    def _reset(self) -> None:
        self._state = MonitorState.IDLE
        self._buffer.clear()
        self._clear_candidate()
        self._trigger = None
        self._content = []
        self._started_at = None
        self._context = CaptureContext()

        if self._pending_config is not None:
            self._apply_configuration(self._pending_config)
            self._pending_config = None

    def _apply_configuration(self, configuration: TriggerConfiguration) -> None:
        self._config = configuration
        self._buffer = deque(self._buffer, maxlen=max(configuration.longest_trigger, 1))
        logger.info(
            f"Trigger configuration applied: {sorted(configuration.enabled_triggers)}"
        )


_STOP = object()


class MonitorRunner:
    """Drive a TriggerMonitor from its own thread.

    ``deliver`` is what the input source calls; it only enqueues, so the
    thread delivering keystrokes never waits on capture processing. Finished
    captures are passed to ``dispatch`` from the monitor thread.
    """

    TICK_INTERVAL = 0.25

    def __init__(
        self,
        monitor: TriggerMonitor,
        source: InputSource,
        dispatch: Callable[[CaptureResult], None],
    ):
        self.monitor = monitor
        self.source = source
        self.dispatch = dispatch
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: threading.Thread | None = None
        source.subscribe(self.deliver)

    def deliver(self, event: KeyEvent) -> None:
        self._queue.put_nowait(event)

    def update_configuration(self, configuration: TriggerConfiguration) -> None:
        """Thread-safe: the change is applied on the monitor thread."""
        self._queue.put_nowait(configuration)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="capto-monitor", daemon=True)
        self._thread.start()
        self.source.start()
        logger.info("Trigger monitor started")

    def stop(self) -> None:
        if self._thread is None:
            return
        self.source.stop()
        self._queue.put_nowait(_STOP)
        self._thread.join(timeout=5)
        self._thread = None
        logger.info("Trigger monitor stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self.TICK_INTERVAL)
            except queue.Empty:
                item = None

            if item is _STOP:
                break

            results: list[CaptureResult] = []
            if isinstance(item, TriggerConfiguration):
                self.monitor.update_configuration(item)
            elif isinstance(item, KeyEvent):
                results.extend(self.monitor.feed(item))

            expired = self.monitor.tick()
            if expired is not None:
                results.append(expired)

            for result in results:
                try:
                    self.dispatch(result)
                except Exception as e:
                    logger.error(f"Failed to dispatch capture: {e}")
