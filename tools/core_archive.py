"""tools/core_archive.py

Prerequisite package staging.

The analysis engine needs two packages unpacked next to the job before it can
run: the toolchain (CLI, measures, seeds, workflows) and the weather-file
cache. Both arrive as archives. Staging follows the same reuse rule as repo
acquisition:

* If the target directory already exists -> reuse it (no verification).
* Else, unpack the archive into it (fetching the archive first if a source
  URL is known).

Extraction and verification are kept as two separate steps: extraction
returns an :class:`ExtractOutcome` and never raises; the caller decides
success from ``target_dir.is_dir()`` afterwards.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from .core_fetch import fetch_archive

logger = logging.getLogger(__name__)

LineFn = Callable[[str], None]


@dataclass(frozen=True)
class ExtractOutcome:
    """Result of one extraction attempt."""

    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class StagedDirectory:
    """A package known to be unpacked at ``path``."""

    package_id: str
    path: Path


def package_id_for(package_path: Path) -> str:
    """Stable package identifier: archive file name without its extension.

    Examples:
      "OpenStudio CLI For Revit.zip" -> "OpenStudio CLI For Revit"
      "weather.tar.gz"               -> "weather"
    """
    name = Path(package_path).name
    for suffix in (".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".zip", ".tar"):
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return Path(name).stem


def extract_archive(package_path: Path, target_dir: Path) -> ExtractOutcome:
    """Unpack ``package_path`` into ``target_dir``. Never raises."""
    try:
        shutil.unpack_archive(str(package_path), str(target_dir))
    except Exception as e:  # zipfile.BadZipFile, EOFError, ReadError, ...
        return ExtractOutcome(ok=False, error=f"{type(e).__name__}: {e}")
    return ExtractOutcome(ok=True)


def _noop(_line: str) -> None:
    return None


class ArchiveStager:
    """Ensure prerequisite packages are unpacked exactly once.

    ``staged`` records every package whose target directory was found (or
    created) during this stager's lifetime.
    """

    def __init__(
        self,
        *,
        extractor: Callable[[Path, Path], ExtractOutcome] = extract_archive,
        fetcher: Callable[[str, Path], bool] = fetch_archive,
        sources: Optional[Dict[str, str]] = None,
        on_line: Optional[LineFn] = None,
    ) -> None:
        self._extract = extractor
        self._fetch = fetcher
        self._sources = dict(sources or {})
        self._emit = on_line or _noop
        self.staged: Dict[str, StagedDirectory] = {}

    def _record(self, package_path: Path, target_dir: Path) -> None:
        pid = package_id_for(package_path)
        self.staged[pid] = StagedDirectory(package_id=pid, path=target_dir.resolve())

    def ensure_staged(self, package_path: Path, target_dir: Path) -> bool:
        """Return True once ``target_dir`` exists; extract only if it does not."""
        package_path = Path(package_path)
        target_dir = Path(target_dir)
        pid = package_id_for(package_path)

        if target_dir.is_dir():
            self._record(package_path, target_dir)
            return True

        if not package_path.exists():
            url = self._sources.get(pid)
            if url:
                self._emit(f"- Fetching {pid} from {url}...")
                if not self._fetch(url, package_path):
                    self._emit(f"-- Download of {pid} failed")

        self._emit(f"- Extracting {pid}...")
        outcome = self._extract(package_path, target_dir)
        if outcome.ok:
            self._emit("-- DONE... ")
        else:
            logger.warning("Extraction of %s failed: %s", package_path, outcome.error)
            self._emit(f"-- Extraction reported an error: {outcome.error}")

        if not target_dir.is_dir():
            return False

        self._record(package_path, target_dir)
        return True
