"""pipeline.models

Lightweight data structures used across the pipeline.

These dataclasses give the orchestrator a small, explicit vocabulary for:
- what the host asked for (PipelineRequest)
- the workflow document being edited (WorkflowDescriptor / Step)
- what to change in it (WorkflowSubstitutions)
- how the run ended (PipelineOutcome)

The workflow types keep the raw JSON they were parsed from, so fields this
repo does not know about survive a load/edit/save cycle untouched.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pipeline.execution.model import ProcessRunResult


@dataclass(frozen=True)
class PipelineRequest:
    """One invocation from the host.

    ``model`` is opaque to the pipeline; only the exporter looks inside it.
    """

    model: Any
    work_dir: Path
    output_dir: Path


@dataclass
class Step:
    """A named step of the workflow with its argument mapping."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Step":
        args = raw.get("arguments") or {}
        if not isinstance(args, dict):
            raise ValueError(f"Step arguments must be an object, got {type(args).__name__}")
        return cls(
            name=str(raw.get("name") or ""),
            arguments=dict(args),
            raw=copy.deepcopy(dict(raw)),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.raw)
        out["name"] = self.name
        out["arguments"] = dict(self.arguments)
        return out


@dataclass
class WorkflowDescriptor:
    """In-memory form of an OpenStudio workflow (``.osw``) document."""

    run_directory: Optional[str] = None
    measure_paths: List[str] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)
    weather_file: Optional[str] = None
    steps: List[Step] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowDescriptor":
        steps_raw = raw.get("steps") or []
        if not isinstance(steps_raw, list):
            raise ValueError("`steps` must be a list")
        steps = []
        for s in steps_raw:
            if not isinstance(s, dict):
                raise ValueError("Each step must be an object")
            steps.append(Step.from_dict(s))

        return cls(
            run_directory=raw.get("run_directory"),
            measure_paths=[str(p) for p in (raw.get("measure_paths") or [])],
            file_paths=[str(p) for p in (raw.get("file_paths") or [])],
            weather_file=raw.get("weather_file"),
            steps=steps,
            raw=copy.deepcopy(dict(raw)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back, keeping the template's key order and unknown fields."""
        out = copy.deepcopy(self.raw)
        out["run_directory"] = self.run_directory
        out["measure_paths"] = list(self.measure_paths)
        out["file_paths"] = list(self.file_paths)
        if self.weather_file is not None or "weather_file" in out:
            out["weather_file"] = self.weather_file
        out["steps"] = [s.to_dict() for s in self.steps]
        return out

    def find_step(self, name: str) -> Optional[Step]:
        """First step whose name matches, or None."""
        for s in self.steps:
            if s.name == name:
                return s
        return None


@dataclass(frozen=True)
class WorkflowSubstitutions:
    """Values written into a workflow template.

    ``measure_paths`` and ``file_paths`` replace the template lists; they are
    never merged. ``step_arguments`` maps step name -> {argument: value}.
    """

    run_directory: str
    measure_paths: List[str] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)
    weather_file: Optional[str] = None
    step_arguments: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineOutcome:
    """Optional richer result for callers that need more than a boolean."""

    ok: bool
    failed_stage: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    run_result: Optional[ProcessRunResult] = None
    workflow_path: Optional[Path] = None
    stages_completed: List[str] = field(default_factory=list)
