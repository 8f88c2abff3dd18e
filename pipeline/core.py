# pipeline/core.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pipeline.execution.model import EngineInvocation
from pipeline.layout import PipelinePaths

ROOT_DIR = Path(__file__).resolve().parents[1]
ENV_PATH = ROOT_DIR / ".env"


def build_engine_invocation(paths: PipelinePaths, *, timeout_seconds: Optional[float] = None) -> EngineInvocation:
    """
    Build the analysis engine invocation for one run.

    The engine is the toolchain's OpenStudio CLI; the rewritten workflow is
    its only input:
      openstudio run -w <output_dir>/workflow.osw
    """
    return EngineInvocation(
        executable=str(paths.engine_executable),
        arguments=("run", "-w", str(paths.workflow)),
        timeout_seconds=timeout_seconds,
    )
