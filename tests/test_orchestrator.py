import json
import os
import stat
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any, List, Optional, Sequence
from unittest import mock

from pipeline.config import PipelineSettings
from pipeline.errors import LaunchError
from pipeline.execution.model import EXITED, KILLED, ProcessRunResult
from pipeline.exporter import ExportOptions, FileCopyExporter
from pipeline.layout import get_pipeline_paths
from pipeline.logsink import MemoryLogSink
from pipeline.models import PipelineRequest
from pipeline.orchestrator import (
    STAGE_EXPORT,
    STAGE_ORDER,
    STAGE_REWRITE,
    STAGE_RUN_ENGINE,
    STAGE_SIDE_CONFIG,
    STAGE_TOOLCHAIN,
    PipelineOrchestrator,
)


SETTINGS = PipelineSettings(engine_executable="bin/openstudio")

DEFAULT_STEPS = [
    {"name": "Change Building Location", "arguments": {"weather_file_name": "OLD.epw"}},
    {"name": "ImportGbxml", "arguments": {}},
    {"name": "Advanced Import Gbxml", "arguments": {}},
    {"name": "GBXML HVAC Import", "arguments": {}},
]


def make_work_dir(root: Path, steps: List[dict], *, side_config: bool = True) -> Path:
    """Lay out an already-staged toolchain + weather cache under ``root``."""
    paths = get_pipeline_paths(SETTINGS, work_dir=root, output_dir=root / "Output")
    paths.workflow_template.parent.mkdir(parents=True)
    paths.workflow_template.write_text(
        json.dumps(
            {
                "run_directory": "./run",
                "measure_paths": ["C:/stale/measures"],
                "file_paths": ["C:/stale/files"],
                "weather_file": "OLD.epw",
                "steps": steps,
            }
        ),
        encoding="utf-8",
    )
    if side_config:
        paths.side_config_source.parent.mkdir(parents=True)
        paths.side_config_source.write_text('{"report": true}', encoding="utf-8")
    paths.weather_dir.mkdir()
    return root


class FakeStager:
    def __init__(self, present: bool = True) -> None:
        self.present = present
        self.calls: List[Path] = []

    def ensure_staged(self, package_path: Path, target_dir: Path) -> bool:
        self.calls.append(Path(target_dir))
        return self.present


class FakeExporter:
    def __init__(self, ok: bool = True, exc: Optional[Exception] = None) -> None:
        self.ok = ok
        self.exc = exc
        self.calls: List[Any] = []

    def export(self, model: Any, output_dir: Path, options: ExportOptions) -> bool:
        self.calls.append(model)
        if self.exc is not None:
            raise self.exc
        if self.ok:
            (Path(output_dir) / options.filename).write_text("<gbXML/>", encoding="utf-8")
        return self.ok


class FakeSupervisor:
    def __init__(self, exit_code: int = 0, termination: str = EXITED, exc: Optional[Exception] = None) -> None:
        self.exit_code = exit_code
        self.termination = termination
        self.exc = exc
        self.calls: List[tuple] = []

    def run(self, executable: Any, arguments: Sequence[str] = (), timeout: Optional[float] = None) -> ProcessRunResult:
        self.calls.append((str(executable), list(arguments), timeout))
        if self.exc is not None:
            raise self.exc
        return ProcessRunResult(exit_code=self.exit_code, lines=["engine says hi"], termination=self.termination)


class TestPipelineOrchestrator(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.sink = MemoryLogSink()
        self.stager = FakeStager()
        self.exporter = FakeExporter()
        self.supervisor = FakeSupervisor()

    def tearDown(self) -> None:
        self._td.cleanup()

    def _orchestrator(self, **kw: Any) -> PipelineOrchestrator:
        kw.setdefault("settings", SETTINGS)
        return PipelineOrchestrator(
            exporter=kw.pop("exporter", self.exporter),
            sink=self.sink,
            stager=kw.pop("stager", self.stager),
            supervisor=kw.pop("supervisor", self.supervisor),
            **kw,
        )

    def _request(self) -> PipelineRequest:
        return PipelineRequest(model="model-handle", work_dir=self.root, output_dir=Path("Output"))

    def test_end_to_end_success_writes_step_argument(self) -> None:
        make_work_dir(self.root, [{"name": "A", "arguments": {"file": "old.xml"}}, {"name": "B", "arguments": {}}])
        orch = self._orchestrator(step_arguments={"A": {"file": "x.xml"}})

        outcome = orch.run_detailed(self._request())

        self.assertTrue(outcome.ok, self.sink.text())
        self.assertEqual(list(STAGE_ORDER), outcome.stages_completed)
        written = json.loads((self.root / "Output" / "workflow.osw").read_text(encoding="utf-8"))
        self.assertEqual("x.xml", written["steps"][0]["arguments"]["file"])
        self.assertEqual({}, written["steps"][1]["arguments"])

        self.assertEqual(1, len(self.supervisor.calls))
        exe, args, timeout = self.supervisor.calls[0]
        self.assertEqual(str((self.root / "OpenStudio CLI For Revit" / "bin" / "openstudio").resolve()), exe)
        self.assertEqual(["run", "-w", str((self.root / "Output" / "workflow.osw").resolve())], args)
        self.assertIsNone(timeout)
        self.assertEqual("DONE", self.sink.lines[-1])

    def test_end_to_end_non_zero_exit_is_run_failure(self) -> None:
        make_work_dir(self.root, [{"name": "A", "arguments": {}}, {"name": "B", "arguments": {}}])
        orch = self._orchestrator(step_arguments={"A": {"file": "x.xml"}}, supervisor=FakeSupervisor(exit_code=1))

        outcome = orch.run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("RunFailure", outcome.error_kind)
        self.assertEqual(STAGE_RUN_ENGINE, outcome.failed_stage)
        self.assertEqual(list(STAGE_ORDER[:-1]), outcome.stages_completed)
        self.assertIn("RunFailure", self.sink.text())
        self.assertEqual(1, outcome.run_result.exit_code)

    def test_default_steps_get_weather_and_gbxml_names(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        self.assertTrue(self._orchestrator().run(self._request()), self.sink.text())

        paths = get_pipeline_paths(SETTINGS, work_dir=self.root, output_dir=self.root / "Output")
        written = json.loads(paths.workflow.read_text(encoding="utf-8"))
        args = {s["name"]: s["arguments"] for s in written["steps"]}

        self.assertEqual(SETTINGS.weather_file, written["weather_file"])
        self.assertEqual(SETTINGS.weather_file, args["Change Building Location"]["weather_file_name"])
        for name in ("ImportGbxml", "Advanced Import Gbxml", "GBXML HVAC Import"):
            self.assertEqual("gbxml.xml", args[name]["gbxml_file_name"])

        self.assertEqual(str(paths.run_dir), written["run_directory"])
        self.assertEqual([str(paths.toolchain_dir / "measures")], written["measure_paths"])
        self.assertEqual(
            [str(paths.weather_dir), str(paths.toolchain_dir / "seeds"), str(paths.output_dir)],
            written["file_paths"],
        )
        self.assertEqual('{"report": true}', paths.side_config.read_text(encoding="utf-8"))
        self.assertTrue(paths.run_dir.is_dir())

    def test_missing_step_fails_without_running_engine(self) -> None:
        make_work_dir(self.root, [{"name": "B", "arguments": {}}])
        orch = self._orchestrator(step_arguments={"A": {"file": "x.xml"}})

        outcome = orch.run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("ConfigError", outcome.error_kind)
        self.assertEqual(STAGE_REWRITE, outcome.failed_stage)
        self.assertEqual([], self.supervisor.calls)

    def test_unstaged_toolchain_aborts_before_export(self) -> None:
        orch = self._orchestrator(stager=FakeStager(present=False))

        outcome = orch.run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("MissingPrerequisite", outcome.error_kind)
        self.assertEqual(STAGE_TOOLCHAIN, outcome.failed_stage)
        self.assertEqual([], self.exporter.calls)
        self.assertEqual([], self.supervisor.calls)

    def test_export_failure_stops_before_rewrite(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        outcome = self._orchestrator(exporter=FakeExporter(ok=False)).run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("ExportFailure", outcome.error_kind)
        self.assertEqual(STAGE_EXPORT, outcome.failed_stage)
        self.assertFalse((self.root / "Output" / "workflow.osw").exists())
        self.assertEqual([], self.supervisor.calls)

    def test_exporter_exception_is_reported_as_export_failure(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        orch = self._orchestrator(exporter=FakeExporter(exc=RuntimeError("host crashed")))

        outcome = orch.run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("ExportFailure", outcome.error_kind)
        self.assertIn("host crashed", outcome.message)

    def test_missing_side_config_is_fatal(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS, side_config=False)
        outcome = self._orchestrator().run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual(STAGE_SIDE_CONFIG, outcome.failed_stage)
        self.assertEqual("MissingPrerequisite", outcome.error_kind)
        self.assertEqual([], self.supervisor.calls)

    def test_launch_error_does_not_escape(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        orch = self._orchestrator(supervisor=FakeSupervisor(exc=LaunchError("no such file")))

        self.assertFalse(orch.run(self._request()))
        self.assertIn("LaunchError", self.sink.text())

    def test_killed_engine_is_run_failure(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        supervisor = FakeSupervisor(exit_code=-9, termination=KILLED)
        orch = self._orchestrator(
            settings=PipelineSettings(engine_executable="bin/openstudio", timeout_seconds=5.0),
            supervisor=supervisor,
        )

        outcome = orch.run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("RunFailure", outcome.error_kind)
        self.assertIn("killed", outcome.message)
        self.assertEqual(5.0, supervisor.calls[0][2])

    def test_unexpected_error_is_contained(self) -> None:
        class ExplodingStager:
            def ensure_staged(self, package_path: Path, target_dir: Path) -> bool:
                raise KeyError("boom")

        outcome = self._orchestrator(stager=ExplodingStager()).run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("UnexpectedError", outcome.error_kind)

    def test_invalid_request_runs_nothing(self) -> None:
        req = PipelineRequest(model=None, work_dir=self.root, output_dir=Path("Output"))
        self.assertFalse(self._orchestrator().run(req))
        self.assertEqual([], self.stager.calls)
        self.assertIn("Invalid model", self.sink.lines)

    def test_non_path_work_dir_is_invalid_request(self) -> None:
        req = PipelineRequest(model="model-handle", work_dir=123, output_dir="Output")

        outcome = self._orchestrator().run_detailed(req)

        self.assertFalse(outcome.ok)
        self.assertEqual("InvalidRequest", outcome.error_kind)
        self.assertEqual([], self.stager.calls)
        self.assertIn("Invalid working directory", self.sink.lines)

    def test_blank_directories_are_invalid_request(self) -> None:
        for work_dir, output_dir, expected in (
            ("   ", "Output", "Invalid working directory"),
            (None, "Output", "Invalid working directory"),
            (str(self.root), "", "Invalid output directory"),
        ):
            with self.subTest(work_dir=work_dir, output_dir=output_dir):
                sink = MemoryLogSink()
                orch = PipelineOrchestrator(settings=SETTINGS, exporter=self.exporter, sink=sink, stager=self.stager)
                outcome = orch.run_detailed(PipelineRequest(model="m", work_dir=work_dir, output_dir=output_dir))

                self.assertEqual("InvalidRequest", outcome.error_kind)
                self.assertIn(expected, sink.lines)
        self.assertEqual([], self.stager.calls)

    def test_path_resolution_error_does_not_escape(self) -> None:
        with mock.patch("pipeline.orchestrator.get_pipeline_paths", side_effect=TypeError("not a path")):
            outcome = self._orchestrator().run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("InvalidRequest", outcome.error_kind)
        self.assertIn("not a path", outcome.message)

    def test_custom_export_options_name_both_file_and_step_argument(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        orch = self._orchestrator(export_options=ExportOptions(filename_stem="building", extension=".gbxml"))

        self.assertTrue(orch.run(self._request()), self.sink.text())

        out = self.root / "Output"
        self.assertTrue((out / "building.gbxml").is_file())
        self.assertFalse((out / "gbxml.xml").exists())
        written = json.loads((out / "workflow.osw").read_text(encoding="utf-8"))
        for step in written["steps"][1:]:
            self.assertEqual("building.gbxml", step["arguments"]["gbxml_file_name"])

    def test_export_reporting_success_without_file_is_export_failure(self) -> None:
        class SilentExporter:
            def export(self, model: Any, output_dir: Path, options: ExportOptions) -> bool:
                return True

        make_work_dir(self.root, DEFAULT_STEPS)
        outcome = self._orchestrator(exporter=SilentExporter()).run_detailed(self._request())

        self.assertFalse(outcome.ok)
        self.assertEqual("ExportFailure", outcome.error_kind)
        self.assertEqual(STAGE_EXPORT, outcome.failed_stage)
        self.assertEqual([], self.supervisor.calls)

    def test_template_is_left_untouched(self) -> None:
        make_work_dir(self.root, DEFAULT_STEPS)
        template = get_pipeline_paths(SETTINGS, work_dir=self.root, output_dir=self.root).workflow_template
        before = template.read_bytes()

        self.assertTrue(self._orchestrator().run(self._request()))
        self.assertEqual(before, template.read_bytes())


@unittest.skipIf(os.name == "nt", "shebang scripts are POSIX-only")
class TestPipelineWithRealEngineProcess(unittest.TestCase):
    """Stand-in engine: a Python script at the toolchain's bin/openstudio."""

    ENGINE = (
        "#!{python}\n"
        "import json, sys\n"
        "assert sys.argv[1:3] == ['run', '-w'], sys.argv\n"
        "wf = json.load(open(sys.argv[3], encoding='utf-8'))\n"
        "print('Loaded workflow with %d steps' % len(wf['steps']), flush=True)\n"
        "print('warning: simulated', file=sys.stderr, flush=True)\n"
        "sys.exit({code})\n"
    )

    def _run(self, code: int) -> tuple:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        root = Path(td.name)
        make_work_dir(root, DEFAULT_STEPS)

        engine = get_pipeline_paths(SETTINGS, work_dir=root, output_dir=root).engine_executable
        engine.parent.mkdir(parents=True)
        engine.write_text(self.ENGINE.format(python=sys.executable, code=code), encoding="utf-8")
        engine.chmod(engine.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        model = root / "exported.xml"
        model.write_text("<gbXML/>", encoding="utf-8")

        sink = MemoryLogSink()
        orch = PipelineOrchestrator(
            settings=SETTINGS,
            exporter=FileCopyExporter(),
            sink=sink,
        )
        outcome = orch.run_detailed(PipelineRequest(model=str(model), work_dir=root, output_dir=Path("Output")))
        return outcome, sink, root

    def test_engine_exit_zero(self) -> None:
        outcome, sink, root = self._run(0)
        self.assertTrue(outcome.ok, sink.text())
        self.assertIn("Loaded workflow with 4 steps", sink.lines)
        self.assertIn("warning: simulated", sink.lines)
        self.assertEqual("<gbXML/>", (root / "Output" / "gbxml.xml").read_text(encoding="utf-8"))

    def test_engine_exit_two(self) -> None:
        outcome, sink, _root = self._run(2)
        self.assertFalse(outcome.ok)
        self.assertEqual("RunFailure", outcome.error_kind)
        self.assertEqual(2, outcome.run_result.exit_code)


if __name__ == "__main__":
    unittest.main()
