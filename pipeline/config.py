"""pipeline.config

Runtime settings for the analysis pipeline.

Settings are layered, last one wins:

1. dataclass defaults (the layout the toolchain package ships with)
2. an optional YAML file (``--config``)
3. ``SYSANALYSIS_*`` environment variables (``.env`` is loaded by
   :mod:`pipeline.wiring` before this runs)

Anything that cannot be interpreted raises ``ValueError`` up front, before a
single stage runs.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "SYSANALYSIS_"


def _default_engine_executable() -> str:
    return "bin/openstudio.exe" if sys.platform.startswith("win") else "bin/openstudio"


@dataclass(frozen=True)
class PipelineSettings:
    # Prerequisite packages (directory name; archive = name + extension)
    toolchain_dirname: str = "OpenStudio CLI For Revit"
    weather_dirname: str = "RevitWeatherFilesCache"
    archive_extension: str = ".zip"
    toolchain_url: Optional[str] = None
    weather_url: Optional[str] = None

    # Toolchain-relative locations
    workflow_template: str = "workflows/HVAC Systems Loads and Sizing.osw"
    engine_executable: str = _default_engine_executable()
    side_config: str = "measures/systems_analysis_report_generator/resources/build/reportConfig.json"

    # Output layout
    output_dirname: str = "Output"
    workflow_filename: str = "workflow.osw"
    run_dirname: str = "run"

    # Run parameters
    weather_file: str = "TWN_CNR_Taichung.591590_TMYx.epw"
    artifact_stem: str = "gbxml"
    artifact_extension: str = ".xml"
    timeout_seconds: Optional[float] = None


_FIELD_NAMES = tuple(f.name for f in fields(PipelineSettings))
_OPTIONAL_STR = {"toolchain_url", "weather_url"}


def _coerce(name: str, value: Any) -> Any:
    if name == "timeout_seconds":
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        try:
            t = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"timeout_seconds must be a number, got {value!r}") from None
        return t if t > 0 else None

    if value is None:
        if name in _OPTIONAL_STR:
            return None
        raise ValueError(f"{name} must not be empty")

    s = str(value).strip()
    if name in _OPTIONAL_STR:
        return s or None
    if not s:
        raise ValueError(f"{name} must not be empty")
    return s


def settings_from_mapping(data: Mapping[str, Any], base: Optional[PipelineSettings] = None) -> PipelineSettings:
    """Overlay ``data`` onto ``base`` (defaults when omitted)."""
    unknown = sorted(set(data) - set(_FIELD_NAMES))
    if unknown:
        raise ValueError(f"Unknown setting(s): {unknown}. Valid: {list(_FIELD_NAMES)}")
    changes = {k: _coerce(k, v) for k, v in data.items()}
    return replace(base or PipelineSettings(), **changes)


def load_settings_yaml(path: str | Path) -> Dict[str, Any]:
    """Read a settings YAML file (top-level mapping)."""
    import yaml

    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Settings file not found: {p}")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Settings YAML could not be parsed: {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Settings YAML must be a mapping/object at top level: {p}")
    return raw


def settings_from_env(env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect ``SYSANALYSIS_<FIELD>`` variables into a settings mapping."""
    env = os.environ if env is None else env
    out: Dict[str, str] = {}
    for name in _FIELD_NAMES:
        key = ENV_PREFIX + name.upper()
        if key in env:
            out[name] = env[key]
    return out


def load_settings(
    config_path: str | Path | None = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PipelineSettings:
    """Defaults <- YAML file <- environment <- explicit overrides (CLI flags)."""
    settings = PipelineSettings()
    if config_path:
        settings = settings_from_mapping(load_settings_yaml(config_path), settings)
    settings = settings_from_mapping(settings_from_env(env), settings)
    if overrides:
        settings = settings_from_mapping({k: v for k, v in overrides.items() if v is not None}, settings)
    return settings
