"""pipeline.workflow

Workflow descriptor (``.osw``) editing.

The toolchain ships a workflow template. For every run we load it, point it
at this run's directories, gbXML file and weather file, and write the result
to a *new* file in the output directory. The template itself is never
written, so it stays a clean base for the next run.

Rules
-----
- ``measure_paths`` / ``file_paths`` are cleared then repopulated; stale
  template entries must not leak into the run.
- Steps are looked up by name (first match). A step named in the
  substitutions but absent from the template is a fatal ConfigError.
- Every field we do not touch is written back unchanged.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from pipeline.errors import ConfigError
from pipeline.models import WorkflowDescriptor, WorkflowSubstitutions
from tools.io import read_json, write_json

# Steps that need the weather file / gbXML filename, keyed by argument.
WEATHER_STEP_ARGUMENTS: Dict[str, str] = {
    "Change Building Location": "weather_file_name",
}
GBXML_STEP_ARGUMENTS: Dict[str, str] = {
    "ImportGbxml": "gbxml_file_name",
    "Advanced Import Gbxml": "gbxml_file_name",
    "GBXML HVAC Import": "gbxml_file_name",
}


def default_step_arguments(*, weather_file: str, artifact_filename: str) -> Dict[str, Dict[str, Any]]:
    """Step edits for the HVAC systems loads and sizing workflow."""
    out: Dict[str, Dict[str, Any]] = {}
    for step, arg in WEATHER_STEP_ARGUMENTS.items():
        out.setdefault(step, {})[arg] = weather_file
    for step, arg in GBXML_STEP_ARGUMENTS.items():
        out.setdefault(step, {})[arg] = artifact_filename
    return out


def load_descriptor(template_path: Path) -> WorkflowDescriptor:
    """Parse a workflow file. Raises ConfigError on any read/parse problem."""
    template_path = Path(template_path)
    try:
        raw = read_json(template_path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read workflow `{template_path}`: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Workflow `{template_path}` must be a JSON object at top level")

    try:
        return WorkflowDescriptor.from_dict(raw)
    except ValueError as e:
        raise ConfigError(f"Malformed workflow `{template_path}`: {e}") from e


def apply_substitutions(doc: WorkflowDescriptor, subs: WorkflowSubstitutions) -> WorkflowDescriptor:
    """Mutate ``doc`` in place and return it."""
    doc.run_directory = subs.run_directory

    doc.measure_paths.clear()
    doc.measure_paths.extend(subs.measure_paths)

    doc.file_paths.clear()
    doc.file_paths.extend(subs.file_paths)

    if subs.weather_file is not None:
        doc.weather_file = subs.weather_file

    for step_name, args in subs.step_arguments.items():
        step = doc.find_step(step_name)
        if step is None:
            raise ConfigError(f"Workflow step `{step_name}` not found")
        step.arguments.update(args)

    return doc


def rewrite(template_path: Path, substitutions: WorkflowSubstitutions) -> WorkflowDescriptor:
    """Load ``template_path`` and apply ``substitutions``. Does not write."""
    return apply_substitutions(load_descriptor(template_path), substitutions)


def write_descriptor(
    doc: WorkflowDescriptor,
    out_path: Path,
    *,
    template_path: Path | None = None,
) -> Path:
    """Serialize ``doc`` to ``out_path``.

    Refuses to write over ``template_path`` when one is given.
    """
    out_path = Path(out_path)
    if template_path is not None and _same_file(out_path, Path(template_path)):
        raise ConfigError(f"Refusing to overwrite workflow template `{template_path}`")
    try:
        write_json(out_path, doc.to_dict())
    except (OSError, TypeError, ValueError) as e:
        raise ConfigError(f"Cannot write workflow `{out_path}`: {e}") from e
    return out_path


def rewrite_to(
    template_path: Path,
    substitutions: WorkflowSubstitutions,
    out_path: Path,
) -> WorkflowDescriptor:
    """rewrite() + write_descriptor() in one call."""
    doc = rewrite(template_path, substitutions)
    write_descriptor(doc, out_path, template_path=template_path)
    return doc


def _same_file(a: Path, b: Path) -> bool:
    return a.expanduser().resolve() == b.expanduser().resolve()
