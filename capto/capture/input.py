"""Keystroke input sources.

A platform keyboard hook only needs to implement ``InputSource``: deliver one
``KeyEvent`` per key press to the subscribed callback. The callback never
blocks, so the hook's own thread is never held up by capture processing.
"""

import logging
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

logger = logging.getLogger(__name__)


class KeyKind(str, Enum):
    """Kind of key press."""

    CHAR = "char"
    ENTER = "enter"
    BACKSPACE = "backspace"
    ESCAPE = "escape"


@dataclass(frozen=True)
class KeyEvent:
    """A single key press, translated to text where possible."""

    kind: KeyKind
    char: str | None = None
    app_name: str | None = None
    url: str | None = None

    @classmethod
    def text(cls, char: str, app_name: str | None = None) -> "KeyEvent":
        return cls(kind=KeyKind.CHAR, char=char, app_name=app_name)


_CONTROL_KEYS = {
    "\r": KeyKind.ENTER,
    "\n": KeyKind.ENTER,
    "\x7f": KeyKind.BACKSPACE,
    "\b": KeyKind.BACKSPACE,
    "\x1b": KeyKind.ESCAPE,
}


def key_event_from_char(
    char: str, app_name: str | None = None, url: str | None = None
) -> KeyEvent:
    """Translate one character of terminal input into a key event."""
    kind = _CONTROL_KEYS.get(char)
    if kind is not None:
        return KeyEvent(kind=kind, app_name=app_name, url=url)
    return KeyEvent(kind=KeyKind.CHAR, char=char, app_name=app_name, url=url)


def key_events_from_text(text: str, app_name: str | None = None) -> list[KeyEvent]:
    """Translate a string into the key events that would type it."""
    return [key_event_from_char(ch, app_name=app_name) for ch in text]


KeyCallback = Callable[[KeyEvent], None]


class InputSource(ABC):
    """Capability interface for a stream of keystrokes."""

    def __init__(self) -> None:
        self._subscribers: list[KeyCallback] = []

    def subscribe(self, callback: KeyCallback) -> None:
        """Register a callback that receives every key event."""
        self._subscribers.append(callback)

    def emit(self, event: KeyEvent) -> None:
        for callback in self._subscribers:
            callback(event)

    @abstractmethod
    def start(self) -> None:
        """Begin delivering events."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering events."""
        ...


class StreamInputSource(InputSource):
    """Read characters from a text stream on a background thread.

    Used with stdin by the CLI; each character becomes one key event. A
    terminal is switched to cbreak mode while running so keys arrive as they
    are pressed instead of a line at a time.
    """

    def __init__(self, stream: TextIO, app_name: str | None = "terminal"):
        super().__init__()
        self.stream = stream
        self.app_name = app_name
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()
        self._saved_mode: list | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stopped.clear()
        self._enter_cbreak()
        self._thread = threading.Thread(
            target=self._read_loop, name="capto-input", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._thread = None
        self._restore_terminal()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _enter_cbreak(self) -> None:
        if sys.platform == "win32" or not self.stream.isatty():
            return
        import termios
        import tty

        fd = self.stream.fileno()
        self._saved_mode = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        logger.debug("Terminal switched to cbreak mode")

    def _restore_terminal(self) -> None:
        if self._saved_mode is None:
            return
        import termios

        termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_mode)
        self._saved_mode = None

    def _read_loop(self) -> None:
        while not self._stopped.is_set():
            char = self.stream.read(1)
            if char == "":
                logger.info("Input stream closed")
                break
            self.emit(key_event_from_char(char, app_name=self.app_name))
