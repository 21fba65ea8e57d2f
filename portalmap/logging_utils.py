"""Logging utilities for the portal map.

Provides color-coded console output plus an in-memory debug log that UI layers
can subscribe to. Every helper writes to both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

from .config import Config


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Debug / graph internals
    YELLOW = "\033[93m"    # Warnings, AI extraction
    RED = "\033[91m"       # Errors
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


class LogLevel(str, Enum):
    """Severity labels recorded in the debug log."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    DEBUG = "DEBUG"
    AI = "AI"


# Markers for operation types (color-blind accessible)
LOG_TAG_DEBUG = "[•]"
LOG_TAG_AI = "[AI]"
LOG_TAG_WARN = "[?]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"

_LEVEL_STYLE = {
    LogLevel.INFO: (Color.CYAN, LOG_TAG_INFO),
    LogLevel.WARN: (Color.YELLOW, LOG_TAG_WARN),
    LogLevel.ERROR: (Color.RED, LOG_TAG_ERROR),
    LogLevel.DEBUG: (Color.BLUE, LOG_TAG_DEBUG),
    LogLevel.AI: (Color.YELLOW, LOG_TAG_AI),
}


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if PORTALMAP_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("PORTALMAP_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


@dataclass(slots=True)
class LogEntry:
    """Single record kept by the debug log."""

    level: LogLevel
    message: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[List[LogEntry]], None]


class DebugLog:
    """Bounded, newest-first buffer of log entries with change subscribers.

    Subscribers receive a copy of the buffer after every append or clear, and
    once immediately on subscription. A subscriber that raises is reported on
    the console and skipped; the remaining subscribers still run.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or Config.DEBUG_LOG_SIZE
        self._entries: List[LogEntry] = []
        self._subscribers: List[Subscriber] = []

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def add(self, level: LogLevel, message: str, data: Any = None) -> LogEntry:
        entry = LogEntry(level=level, message=message, data=data)
        self._entries = [entry, *self._entries][: self.max_entries]
        self._notify()
        return entry

    def clear(self) -> None:
        self._entries = []
        self._notify()

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)
        callback(self.entries)

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers = [sub for sub in self._subscribers if sub is not callback]

    def _notify(self) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(self.entries)
            except Exception as exc:  # noqa: BLE001 - one bad subscriber must not break logging
                print(colored(f"{LOG_TAG_ERROR} Debug log subscriber failed: {exc}", Color.RED))


debug_log = DebugLog()


def _emit(level: LogLevel, message: str, data: Any = None) -> None:
    debug_log.add(level, message, data)
    if level is LogLevel.DEBUG and os.getenv("LOG_LEVEL", Config.LOG_LEVEL).upper() != "DEBUG":
        return
    color, tag = _LEVEL_STYLE[level]
    suffix = f" {data}" if data is not None else ""
    print(colored(f"{tag} {message}{suffix}", color))


def log_info(message: str, data: Any = None) -> None:
    """Log metadata/info (cyan)."""
    _emit(LogLevel.INFO, message, data)


def log_warn(message: str, data: Any = None) -> None:
    """Log a rejected input or recoverable anomaly (yellow)."""
    _emit(LogLevel.WARN, message, data)


def log_error(message: str, data: Any = None) -> None:
    """Log an error (red)."""
    _emit(LogLevel.ERROR, message, data)


def log_debug(message: str, data: Any = None) -> None:
    """Log graph internals (blue); printed only when LOG_LEVEL=DEBUG."""
    _emit(LogLevel.DEBUG, message, data)


def log_ai(message: str, data: Any = None) -> None:
    """Log AI extraction traffic (yellow)."""
    _emit(LogLevel.AI, message, data)


def log_success(message: str, data: Any = None) -> None:
    """Log a success (green). Recorded as INFO in the debug log."""
    debug_log.add(LogLevel.INFO, message, data)
    suffix = f" {data}" if data is not None else ""
    print(colored(f"{LOG_TAG_SUCCESS} {message}{suffix}", Color.GREEN))
