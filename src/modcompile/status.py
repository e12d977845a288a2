"""Build status reporting.

The orchestrator never talks to a UI directly. It reports progress, status
lines and compiler output to a :class:`BuildStatus` sink. The command line
uses :class:`ConsoleBuildStatus`; tests typically use
:class:`RecordingBuildStatus` to assert on what was reported.

``level`` arguments are :mod:`logging` level integers.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from modcompile.output import error, info, progress, warning


@runtime_checkable
class BuildStatus(Protocol):
    """Sink for build progress and compiler output."""

    def set_progress(self, i: int, n: int = -1) -> None:
        """Report progress *i* of *n*; ``n == -1`` keeps the previous total."""
        ...

    def set_status(self, msg: str) -> None:
        ...

    def log_compiler_line(self, msg: str, level: int) -> None:
        ...


class ConsoleBuildStatus:
    """Routes build status to the global output manager.

    Compiler errors go to the error stream; warnings and informational lines
    keep their own styling. Progress is shown only on interactive terminals.
    """

    def __init__(self) -> None:
        self._total = -1

    def set_progress(self, i: int, n: int = -1) -> None:
        if n >= 0:
            self._total = n
        if self._total > 0:
            progress(f"  {i}/{self._total}")

    def set_status(self, msg: str) -> None:
        info(msg)

    def log_compiler_line(self, msg: str, level: int) -> None:
        if level >= logging.ERROR:
            error(msg)
        elif level >= logging.WARNING:
            warning(msg)
        else:
            info(msg)


class RecordingBuildStatus:
    """Keeps every status line, compiler line and progress update in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.statuses: list[str] = []
        self.compiler_lines: list[tuple[str, int]] = []
        self.progress: list[tuple[int, int]] = []

    def set_progress(self, i: int, n: int = -1) -> None:
        with self._lock:
            self.progress.append((i, n))

    def set_status(self, msg: str) -> None:
        with self._lock:
            self.statuses.append(msg)

    def log_compiler_line(self, msg: str, level: int) -> None:
        with self._lock:
            self.compiler_lines.append((msg, level))
