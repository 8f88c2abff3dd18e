"""pipeline.errors

Error vocabulary for pipeline stages.

Every stage raises one of these; :mod:`pipeline.orchestrator` is the only
place that catches them and turns them into a boolean result for the host.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for stage failures. ``kind`` is what the trace log shows."""

    kind = "PipelineError"


class MissingPrerequisite(PipelineError):
    """A package, template or side-config is absent after staging."""

    kind = "MissingPrerequisite"


class ConfigError(PipelineError):
    """Workflow descriptor could not be parsed, edited or written."""

    kind = "ConfigError"


class ExportFailure(PipelineError):
    """The exporter reported failure."""

    kind = "ExportFailure"


class LaunchError(PipelineError):
    """The analysis engine could not be started."""

    kind = "LaunchError"


class RunFailure(PipelineError):
    """The analysis engine exited non-zero or was killed."""

    kind = "RunFailure"
