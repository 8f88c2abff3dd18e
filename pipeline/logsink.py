"""pipeline.logsink

Trace log sinks.

The pipeline reports progress as plain lines ("- Extracting ...",
"-- DONE... "). Instead of a process-wide print function, every component
receives a sink with a single ``append(line)`` method. Sinks must accept
concurrent appends: the process supervisor feeds stdout and stderr from two
reader threads.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol, Sequence


class LogSink(Protocol):
    def append(self, line: str) -> None: ...


class MemoryLogSink:
    """Append-only, thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: List[str] = []

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def text(self) -> str:
        return "\n".join(self.lines)


class LoggingLogSink:
    """Forward lines to a :class:`logging.Logger` (handlers serialize writes)."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self._logger = logger or logging.getLogger("pipeline.trace")
        self._level = level

    def append(self, line: str) -> None:
        self._logger.log(self._level, "%s", line)


class TeeLogSink:
    """Fan out each line to several sinks."""

    def __init__(self, sinks: Sequence[LogSink]) -> None:
        self._sinks = list(sinks)

    def append(self, line: str) -> None:
        for s in self._sinks:
            s.append(line)
