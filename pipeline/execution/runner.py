"""pipeline.execution.runner

Subprocess supervision for the analysis engine.

Rule
----
Only this module should touch ``subprocess``.

Output is streamed, not buffered: stdout and stderr each get a reader thread
that forwards lines to the log sink as they arrive, so a long engine run
shows progress in real time and a chatty child never blocks on a full pipe.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence, Union

from pipeline.errors import LaunchError
from pipeline.logsink import LogSink

from .model import EXITED, KILLED, ProcessRunResult, now_iso

logger = logging.getLogger(__name__)

# Bound on how long we wait for reader threads once the child is gone and no
# timeout budget applies; a grandchild may still hold the pipe open.
READER_JOIN_AFTER_KILL_SECONDS = 5.0

# Minimum time left to drain the pipes when the child exits right at the deadline.
READER_DRAIN_GRACE_SECONDS = 0.5

PathLike = Union[str, Path]


class ProcessSupervisor:
    """Launch one process, stream its output, and never leave it running."""

    def __init__(
        self,
        sink: LogSink,
        *,
        cwd: Optional[PathLike] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self._sink = sink
        self._cwd = cwd
        self._env = env

    def _pump(self, stream: IO[str], captured: List[str], lock: threading.Lock) -> None:
        try:
            for raw in stream:
                line = raw.rstrip("\r\n")
                if not line.strip():
                    continue
                with lock:
                    captured.append(line)
                self._sink.append(line)
        finally:
            stream.close()

    @staticmethod
    def _join_readers(readers: Sequence[threading.Thread], *, deadline: Optional[float]) -> None:
        """Join readers until ``deadline`` (monotonic), else for a bounded grace period."""
        for t in readers:
            if deadline is None:
                budget = READER_JOIN_AFTER_KILL_SECONDS
            else:
                budget = max(deadline - time.monotonic(), READER_DRAIN_GRACE_SECONDS)
            t.join(timeout=budget)

    def run(
        self,
        executable: PathLike,
        arguments: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> ProcessRunResult:
        """Run ``executable`` with ``arguments`` and wait for it.

        ``timeout`` (seconds) is a strict upper bound: once exceeded the
        process is killed and the result is marked ``killed``. It also covers
        draining the output pipes, so a grandchild that keeps them open marks
        the run ``killed`` instead of holding it past the deadline. ``None`` or
        a non-positive value means no bound on the process itself.

        Raises LaunchError if the process cannot be started. Never raises on
        non-zero exit codes.
        """
        cmd = [str(executable), *[str(a) for a in arguments]]
        command_str = " ".join(cmd)

        # If env is provided, merge it onto the current process environment.
        env = os.environ.copy()
        if self._env:
            env.update(self._env)

        wait_timeout = timeout if timeout and timeout > 0 else None

        started = now_iso()
        t0 = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(self._cwd) if self._cwd else None,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise LaunchError(f"Failed to start `{cmd[0]}`: {e}") from e

        logger.debug("Started pid=%s: %s", proc.pid, command_str)

        captured: List[str] = []
        lock = threading.Lock()
        readers = [
            threading.Thread(
                target=self._pump,
                args=(stream, captured, lock),
                name=f"supervisor-{label}-{proc.pid}",
                daemon=True,
            )
            for label, stream in (("stdout", proc.stdout), ("stderr", proc.stderr))
        ]
        for t in readers:
            t.start()

        deadline = t0 + wait_timeout if wait_timeout else None
        termination = EXITED
        try:
            proc.wait(timeout=wait_timeout)
        except subprocess.TimeoutExpired:
            self._sink.append(f"-- Timed out after {wait_timeout}s, killing process")
            termination = KILLED
        finally:
            if proc.poll() is None:
                self._sink.append(f"-- Kill process of `{Path(cmd[0]).name}`")
                proc.kill()
                termination = KILLED
            proc.wait()
            self._join_readers(readers, deadline=None if termination == KILLED else deadline)

        if any(t.is_alive() for t in readers):
            # The child exited but something it spawned still holds the pipes.
            self._sink.append(f"-- Output of `{Path(cmd[0]).name}` still open after exit, giving up on it")
            if deadline is not None:
                termination = KILLED

        elapsed = time.monotonic() - t0
        with lock:
            lines = list(captured)

        return ProcessRunResult(
            exit_code=int(proc.returncode),
            lines=lines,
            termination=termination,
            elapsed_seconds=elapsed,
            command_str=command_str,
            started=started,
            finished=now_iso(),
        )
