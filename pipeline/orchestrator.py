"""pipeline.orchestrator

High-level orchestration entrypoint for the system analysis pipeline.

Stages run in a fixed order and the first failure ends the run::

    stage toolchain -> stage reference-data -> prepare output dir
      -> export artifact -> rewrite descriptor -> copy side-config
      -> run analysis engine

Design principles
-----------------
- Each stage raises a :class:`~pipeline.errors.PipelineError` on failure.
  This module is the only place those are caught; the host only ever sees a
  boolean (or a :class:`~pipeline.models.PipelineOutcome`).
- No retries, no rollback: staged packages, the exported artifact and the
  rewritten workflow stay on disk after a failure.
- Every stage writes "- <what>..." / "-- DONE... " lines to the injected sink
  so the host can tell which stage failed and why.
- Collaborators (stager, exporter, supervisor) are injected; tests swap in
  fakes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pipeline.config import PipelineSettings
from pipeline.core import build_engine_invocation
from pipeline.errors import ExportFailure, MissingPrerequisite, PipelineError, RunFailure
from pipeline.execution.model import ProcessRunResult
from pipeline.execution.runner import ProcessSupervisor
from pipeline.exporter import ArtifactExporter, ExportOptions, artifact_path
from pipeline.layout import PipelinePaths, get_pipeline_paths
from pipeline.logsink import LogSink
from pipeline.models import PipelineOutcome, PipelineRequest, WorkflowSubstitutions
from pipeline.workflow import default_step_arguments, rewrite_to
from tools.core_archive import ArchiveStager
from tools.io import copy_file

logger = logging.getLogger(__name__)

STAGE_TOOLCHAIN = "stage toolchain"
STAGE_REFERENCE_DATA = "stage reference-data"
STAGE_PREPARE_OUTPUT = "prepare output dir"
STAGE_EXPORT = "export artifact"
STAGE_REWRITE = "rewrite descriptor"
STAGE_SIDE_CONFIG = "copy side-config"
STAGE_RUN_ENGINE = "run analysis engine"

STAGE_ORDER: Tuple[str, ...] = (
    STAGE_TOOLCHAIN,
    STAGE_REFERENCE_DATA,
    STAGE_PREPARE_OUTPUT,
    STAGE_EXPORT,
    STAGE_REWRITE,
    STAGE_SIDE_CONFIG,
    STAGE_RUN_ENGINE,
)


class Stager(Protocol):
    def ensure_staged(self, package_path: Path, target_dir: Path) -> bool: ...


class Supervisor(Protocol):
    def run(
        self,
        executable: Any,
        arguments: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> ProcessRunResult: ...


@dataclass
class _RunState:
    """Mutable per-run state shared by the stages."""

    request: PipelineRequest
    paths: PipelinePaths
    artifact: Path
    run_result: Optional[ProcessRunResult] = None
    workflow_path: Optional[Path] = None
    completed: List[str] = field(default_factory=list)


def _is_blank_dir(value: Any) -> bool:
    # Checked on the raw value: Path("") already reads as ".".
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return not isinstance(value, os.PathLike)


def _validate_request(request: Optional[PipelineRequest]) -> Optional[str]:
    """Return a problem description, or None if the request is usable."""
    if request is None:
        return "Invalid request"
    if request.model is None:
        return "Invalid model"
    if _is_blank_dir(request.work_dir):
        return "Invalid working directory"
    if _is_blank_dir(request.output_dir):
        return "Invalid output directory"
    return None


class PipelineOrchestrator:
    """Run the staging/export/rewrite/engine sequence for one request."""

    def __init__(
        self,
        *,
        settings: PipelineSettings,
        exporter: ArtifactExporter,
        sink: LogSink,
        stager: Optional[Stager] = None,
        supervisor: Optional[Supervisor] = None,
        export_options: Optional[ExportOptions] = None,
        step_arguments: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self._settings = settings
        self._exporter = exporter
        self._sink = sink
        self._stager = stager or ArchiveStager(
            sources={
                name: url
                for name, url in (
                    (settings.toolchain_dirname, settings.toolchain_url),
                    (settings.weather_dirname, settings.weather_url),
                )
                if url
            },
            on_line=sink.append,
        )
        self._supervisor = supervisor or ProcessSupervisor(sink)
        self._export_options = export_options or ExportOptions(
            filename_stem=settings.artifact_stem,
            extension=settings.artifact_extension,
        )
        self._step_arguments = step_arguments

    def _log(self, line: str) -> None:
        self._sink.append(line)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, request: PipelineRequest) -> bool:
        """Run the pipeline; True only if every stage succeeded."""
        return self.run_detailed(request).ok

    def run_detailed(self, request: PipelineRequest) -> PipelineOutcome:
        """Run the pipeline and describe how it ended. Never raises."""
        problem = _validate_request(request)
        if problem:
            self._log("Error occurred")
            self._log(problem)
            return PipelineOutcome(ok=False, failed_stage="validate request", error_kind="InvalidRequest", message=problem)

        try:
            paths = get_pipeline_paths(self._settings, work_dir=request.work_dir, output_dir=request.output_dir)
        except Exception as e:
            self._log(f"-- Cannot resolve directories: {type(e).__name__}: {e}")
            return PipelineOutcome(ok=False, failed_stage="validate request", error_kind="InvalidRequest", message=str(e))

        state = _RunState(request=request, paths=paths, artifact=artifact_path(paths.output_dir, self._export_options))

        for name, stage in self._stages():
            try:
                stage(state)
            except PipelineError as e:
                self._log(f"-- {e.kind}: {e}")
                self._log(f"FAILED at stage `{name}`")
                return self._outcome(state, ok=False, stage=name, kind=e.kind, message=str(e))
            except Exception as e:
                logger.exception("Unexpected error in stage %r", name)
                self._log("- Printing received exception...")
                self._log(f"-- UnexpectedError: {type(e).__name__}: {e}")
                self._log(f"FAILED at stage `{name}`")
                return self._outcome(state, ok=False, stage=name, kind="UnexpectedError", message=str(e))
            state.completed.append(name)

        self._log("DONE")
        return self._outcome(state, ok=True)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stages(self) -> List[Tuple[str, Callable[[_RunState], None]]]:
        return [
            (STAGE_TOOLCHAIN, self._stage_toolchain),
            (STAGE_REFERENCE_DATA, self._stage_reference_data),
            (STAGE_PREPARE_OUTPUT, self._prepare_output),
            (STAGE_EXPORT, self._export_artifact),
            (STAGE_REWRITE, self._rewrite_descriptor),
            (STAGE_SIDE_CONFIG, self._copy_side_config),
            (STAGE_RUN_ENGINE, self._run_engine),
        ]

    def _stage_package(self, label: str, archive: Path, target: Path) -> None:
        self._log(f"- Staging {label}...")
        if not self._stager.ensure_staged(archive, target):
            raise MissingPrerequisite(f"Failed to stage {label}: `{target}` does not exist")
        self._log(f"-- {label} found at `{target}`")

    def _stage_toolchain(self, state: _RunState) -> None:
        self._stage_package(self._settings.toolchain_dirname, state.paths.toolchain_archive, state.paths.toolchain_dir)

    def _stage_reference_data(self, state: _RunState) -> None:
        self._stage_package(self._settings.weather_dirname, state.paths.weather_archive, state.paths.weather_dir)

    def _prepare_output(self, state: _RunState) -> None:
        paths = state.paths
        try:
            paths.output_dir.mkdir(parents=True, exist_ok=True)
            paths.run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MissingPrerequisite(f"Cannot create output directory `{paths.output_dir}`: {e}") from e
        self._log(f"outputDir {paths.output_dir}")

        if not paths.workflow_template.is_file():
            raise MissingPrerequisite(f"Workflow file cannot be found at `{paths.workflow_template}`")
        self._log(f"Workflow file found at `{paths.workflow_template}`")

    def _export_artifact(self, state: _RunState) -> None:
        self._log(f"- Exporting model to {self._export_options.filename}...")
        try:
            exported = self._exporter.export(state.request.model, state.paths.output_dir, self._export_options)
        except Exception as e:
            raise ExportFailure(f"Exporter raised {type(e).__name__}: {e}") from e
        if not exported:
            raise ExportFailure(f"Failed to export {self._export_options.filename}")
        if not state.artifact.is_file():
            raise ExportFailure(f"Exporter reported success but `{state.artifact}` does not exist")
        self._log("-- DONE... ")

    def _substitutions(self, state: _RunState) -> WorkflowSubstitutions:
        paths = state.paths
        if self._step_arguments is not None:
            step_args: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in self._step_arguments.items()}
        else:
            step_args = default_step_arguments(
                weather_file=self._settings.weather_file,
                artifact_filename=state.artifact.name,
            )
        return WorkflowSubstitutions(
            run_directory=str(paths.run_dir),
            measure_paths=paths.measure_paths,
            file_paths=paths.file_paths,
            weather_file=self._settings.weather_file,
            step_arguments=step_args,
        )

    def _rewrite_descriptor(self, state: _RunState) -> None:
        paths = state.paths
        self._log(f"- Updating `{paths.workflow.name}`...")
        rewrite_to(paths.workflow_template, self._substitutions(state), paths.workflow)
        state.workflow_path = paths.workflow
        self._log(f"-- Wrote `{paths.workflow}`")

    def _copy_side_config(self, state: _RunState) -> None:
        paths = state.paths
        self._log(f"- Copying `{paths.side_config.name}` to `{paths.output_dir.name}`...")
        try:
            copy_file(paths.side_config_source, paths.side_config)
        except OSError as e:
            raise MissingPrerequisite(f"Failed to copy `{paths.side_config.name}`: {e}") from e
        self._log("-- DONE")

    def _run_engine(self, state: _RunState) -> None:
        inv = build_engine_invocation(state.paths, timeout_seconds=self._settings.timeout_seconds)
        exe_name = Path(inv.executable).name
        self._log("- Running system analysis and generating reports...")
        self._log(f"-- Command : {inv.command_str}")

        # LaunchError propagates as-is.
        result = self._supervisor.run(inv.executable, list(inv.arguments), inv.timeout_seconds)
        state.run_result = result

        if result.killed:
            raise RunFailure(f"`{exe_name}` was killed (timeout {inv.timeout_seconds}s), exit code {result.exit_code}")
        if not result.succeeded:
            raise RunFailure(f"`{exe_name}` exited with code {result.exit_code}")
        self._log(f"-- DONE... ({result.elapsed_seconds:.1f}s)")

    # ------------------------------------------------------------------

    def _outcome(
        self,
        state: _RunState,
        *,
        ok: bool,
        stage: Optional[str] = None,
        kind: Optional[str] = None,
        message: Optional[str] = None,
    ) -> PipelineOutcome:
        return PipelineOutcome(
            ok=ok,
            failed_stage=stage,
            error_kind=kind,
            message=message,
            run_result=state.run_result,
            workflow_path=state.workflow_path,
            stages_completed=list(state.completed),
        )
