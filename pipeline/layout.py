"""pipeline.layout

Filesystem layout helpers.

Every path the pipeline touches is computed here, once, from the settings
and the request's working/output directories. Stages receive a
:class:`PipelinePaths` instead of re-deriving paths on their own.

Work directory layout::

    <work_dir>/
      OpenStudio CLI For Revit.zip        toolchain archive
      OpenStudio CLI For Revit/           staged toolchain
        bin/openstudio[.exe]
        measures/ seeds/ workflows/
      RevitWeatherFilesCache.zip          weather archive
      RevitWeatherFilesCache/             staged weather files

Output directory layout::

    <output_dir>/
      gbxml.xml           exported artifact
      workflow.osw        rewritten workflow
      reportConfig.json   side-config copied from the toolchain
      run/                engine run directory
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from pipeline.config import PipelineSettings


@dataclass(frozen=True)
class PipelinePaths:
    work_dir: Path
    output_dir: Path

    toolchain_archive: Path
    toolchain_dir: Path
    weather_archive: Path
    weather_dir: Path

    workflow_template: Path
    engine_executable: Path
    side_config_source: Path

    workflow: Path
    side_config: Path
    run_dir: Path

    @property
    def measure_paths(self) -> List[str]:
        return [str(self.toolchain_dir / "measures")]

    @property
    def file_paths(self) -> List[str]:
        # Order matters: the engine resolves files first-match.
        return [
            str(self.weather_dir),
            str(self.toolchain_dir / "seeds"),
            str(self.output_dir),
        ]


def get_pipeline_paths(
    settings: PipelineSettings,
    *,
    work_dir: Path,
    output_dir: Path,
) -> PipelinePaths:
    """Compute filesystem paths for one pipeline run."""
    work = Path(work_dir).expanduser().resolve()
    out = Path(output_dir).expanduser()
    out = (out if out.is_absolute() else work / out).resolve()

    toolchain = work / settings.toolchain_dirname
    weather = work / settings.weather_dirname

    return PipelinePaths(
        work_dir=work,
        output_dir=out,
        toolchain_archive=work / f"{settings.toolchain_dirname}{settings.archive_extension}",
        toolchain_dir=toolchain,
        weather_archive=work / f"{settings.weather_dirname}{settings.archive_extension}",
        weather_dir=weather,
        workflow_template=toolchain / settings.workflow_template,
        engine_executable=toolchain / settings.engine_executable,
        side_config_source=toolchain / settings.side_config,
        workflow=out / settings.workflow_filename,
        side_config=out / Path(settings.side_config).name,
        run_dir=out / settings.run_dirname,
    )
