"""
Progress reporting sinks.

The orchestrator reports ``(percent, message, arg)`` at every stage
boundary. ``message`` is an untranslated ``str.format`` template with at
most one ``{}`` placeholder that ``arg`` fills; sinks decide how (and in
which language) to show it. Callbacks run on the orchestrator's thread
and must return promptly.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol


class ProgressIndicator(Protocol):
    def advance(self, percent: int, message: str, arg: str | None = None) -> None:
        ...


def format_message(message: str, arg: str | None = None) -> str:
    """Fill the message template with its optional argument."""
    return message.format(arg) if arg is not None else message


class NullProgress:
    """Discard all progress reports."""

    def advance(self, percent: int, message: str, arg: str | None = None) -> None:
        pass


class LoggingProgress:
    """Forward progress reports to a logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO):
        self.logger = logger or logging.getLogger("hdrmerge.progress")
        self.level = level

    def advance(self, percent: int, message: str, arg: str | None = None) -> None:
        self.logger.log(self.level, "[%3d%%] %s", percent, format_message(message, arg))


class CallbackProgress:
    """Adapt a plain ``callback(percent, message, arg)`` function."""

    def __init__(self, callback: Callable[[int, str, str | None], None]):
        self.callback = callback

    def advance(self, percent: int, message: str, arg: str | None = None) -> None:
        self.callback(percent, message, arg)
