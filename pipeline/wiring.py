"""pipeline.wiring

This module is the **composition root** for the Python runtime.

"Composition root" means: the single place where we *assemble* the running
application from its building blocks:

- load configuration / environment variables
- choose real vs stub implementations (useful for testing)
- build the orchestrator object

Keeping this wiring in one place prevents configuration and dependency setup
from being duplicated across entrypoints (CLI, scripts, CI).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from pipeline.config import PipelineSettings, load_settings
from pipeline.core import ENV_PATH
from pipeline.exporter import ArtifactExporter, FileCopyExporter
from pipeline.logsink import LoggingLogSink, LogSink
from pipeline.orchestrator import PipelineOrchestrator

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False) -> None:
    """Root logging setup for CLI runs (library modules only call getLogger)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def build_settings(
    *,
    config_path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    dotenv_path: Optional[Path] = ENV_PATH,
) -> PipelineSettings:
    """Load ``.env`` (never overriding the shell), then layer settings."""
    if dotenv_path is not None and Path(dotenv_path).exists():
        load_dotenv(dotenv_path, override=False)
    return load_settings(config_path, overrides=overrides)


def build_orchestrator(
    settings: PipelineSettings,
    *,
    sink: Optional[LogSink] = None,
    exporter: Optional[ArtifactExporter] = None,
) -> PipelineOrchestrator:
    """Build the orchestrator with real collaborators unless given others.

    This is the place to swap implementations for tests.
    """
    return PipelineOrchestrator(
        settings=settings,
        exporter=exporter or FileCopyExporter(),
        sink=sink or LoggingLogSink(),
    )
