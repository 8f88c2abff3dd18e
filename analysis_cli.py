#!/usr/bin/env python3
"""
Simple CLI host for the system analysis pipeline.

Stages the OpenStudio toolchain and weather files, places the gbXML export
in the output directory, rewrites the workflow and runs the engine.

Usage:
  python analysis_cli.py --model exports/building.xml
  python analysis_cli.py --model building.xml --work-dir /jobs/42 --output-dir Output
  python analysis_cli.py --model building.xml --config settings.yaml --timeout 3600
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

from pipeline.models import PipelineRequest
from pipeline.wiring import build_orchestrator, build_settings, configure_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the HVAC systems analysis pipeline for one model.")

    parser.add_argument("--model", help="Path to the gbXML file exported from the building model")
    parser.add_argument(
        "--work-dir",
        default=str(Path.cwd()),
        help="Directory holding the toolchain/weather archives (default: current directory)",
    )
    parser.add_argument(
        "--output-dir",
        help="Output directory; relative paths are anchored under --work-dir (default: settings output_dirname)",
    )
    parser.add_argument("--config", help="Optional YAML settings file")
    parser.add_argument("--weather-file", help="Weather file name to select (e.g. USA_CO_Golden.epw)")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Kill the engine after this many seconds (default: no limit)",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(verbose=bool(args.verbose))

    if not args.model:
        raise SystemExit("Missing --model (path to the exported gbXML file).")

    overrides: Dict[str, object] = {
        "weather_file": args.weather_file,
        "timeout_seconds": args.timeout,
    }
    try:
        settings = build_settings(config_path=args.config, overrides=overrides)
    except (OSError, ValueError) as e:
        raise SystemExit(f"Invalid settings: {e}")

    work_dir = Path(args.work_dir)
    output_dir = Path(args.output_dir or settings.output_dirname)

    print("\n🚀 Running system analysis")
    print(f"  Model    : {args.model}")
    print(f"  Work dir : {work_dir}")
    print(f"  Output   : {output_dir}")

    orchestrator = build_orchestrator(settings)
    outcome = orchestrator.run_detailed(
        PipelineRequest(model=args.model, work_dir=work_dir, output_dir=output_dir)
    )

    if outcome.ok:
        print("\n✅ Analysis completed.")
        raise SystemExit(0)

    print(f"\n⚠️ Analysis failed at stage `{outcome.failed_stage}` ({outcome.error_kind}): {outcome.message}", file=sys.stderr)
    raise SystemExit(1)


if __name__ == "__main__":
    main()
