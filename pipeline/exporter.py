"""pipeline.exporter

Interchange artifact export boundary.

Producing gbXML from a building model happens in the host application, so
the pipeline only sees a capability with one method::

    export(model, output_dir, options) -> bool

The pipeline relies on the on-disk naming convention only
(``output_dir / options.filename``); it never inspects the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from tools.io import copy_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportOptions:
    filename_stem: str = "gbxml"
    extension: str = ".xml"
    energy_model_type: str = "analysis"
    export_analytical_systems: bool = True

    @property
    def filename(self) -> str:
        return f"{self.filename_stem}{self.extension}"


def artifact_path(output_dir: Path, options: ExportOptions) -> Path:
    return Path(output_dir) / options.filename


class ArtifactExporter(Protocol):
    def export(self, model: Any, output_dir: Path, options: ExportOptions) -> bool: ...


class FileCopyExporter:
    """Exporter for hosts that already produced the gbXML file.

    ``model`` is the path to that file; it is copied to the conventional
    artifact path in ``output_dir``.
    """

    def export(self, model: Any, output_dir: Path, options: ExportOptions) -> bool:
        if model is None:
            return False
        src = Path(str(model))
        if not src.is_file():
            logger.warning("gbXML source not found: %s", src)
            return False

        dst = artifact_path(output_dir, options)
        if src.resolve() == dst.resolve():
            return True
        try:
            copy_file(src, dst)
        except OSError as e:
            logger.warning("Copying %s -> %s failed: %s", src, dst, e)
            return False
        return True
