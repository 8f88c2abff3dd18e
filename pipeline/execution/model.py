"""pipeline.execution.model

Shared data structures for engine execution.

The execution layer is split into:

* :mod:`pipeline.execution.model`  – plain records (what ran, how it ended)
* :mod:`pipeline.execution.runner` – subprocess execution (side effects)

These dataclasses intentionally contain no side effects so they can be used
freely by the supervisor, the orchestrator and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

EXITED = "exited"
KILLED = "killed"


def now_iso() -> str:
    """Return current UTC time as ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class EngineInvocation:
    """A planned engine command invocation."""

    executable: str
    arguments: Sequence[str] = ()
    timeout_seconds: Optional[float] = None

    @property
    def cmd(self) -> List[str]:
        return [self.executable, *self.arguments]

    @property
    def command_str(self) -> str:
        return " ".join(self.cmd)


@dataclass(frozen=True)
class ProcessRunResult:
    """How one supervised process ended."""

    exit_code: int
    lines: List[str] = field(default_factory=list)
    termination: str = EXITED
    elapsed_seconds: float = 0.0
    command_str: str = ""
    started: Optional[str] = None
    finished: Optional[str] = None

    @property
    def killed(self) -> bool:
        return self.termination == KILLED

    @property
    def succeeded(self) -> bool:
        # Any non-zero code is a failure (positive codes included).
        return self.termination == EXITED and self.exit_code == 0
