#!/usr/bin/env python3
"""
capbench - V4L2 capture benchmark CLI (Typer)

Without --device a v4l2loopback device is provisioned for the run and torn
down afterwards. Without --single every scenario in the table is run and the
reports land in the output directory.

Exit codes: 0 success, 1 run failure, 2 configuration error.
"""

from __future__ import annotations

import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import typer

from capbench.benchmark.artifact_manager import ArtifactManager
from capbench.benchmark.config import (
    SCENARIOS,
    BenchmarkConfig,
    parse_duration,
    select_scenarios,
)
from capbench.benchmark.defaults import get_defaults
from capbench.benchmark.exceptions import (
    BenchmarkError,
    ConfigurationError,
    ScenarioNotFoundError,
)
from capbench.benchmark.report import print_scenario_list, print_status_table, render_results
from capbench.harness.executor import BenchmarkExecutor
from capbench.harness.orchestrator import ScenarioOrchestrator
from capbench.loopback.provisioner import LoopbackProvisioner, build_source_filter
from capbench.utils.logger import get_console, get_logger, setup_logging

logger = get_logger("capbench.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

_defaults = get_defaults()

app = typer.Typer(
    add_completion=False,
    help="Benchmark frame capture from a V4L2 device (a v4l2loopback device by default).",
)


def _run_single(config: BenchmarkConfig) -> int:
    results = BenchmarkExecutor().run(config)
    typer.echo(render_results(config, results))
    if results.has_anomalies:
        logger.warning("Run finished with anomalies: %s", "; ".join(results.anomalies))
        return EXIT_FAILURE
    return EXIT_OK


def _run_multi(
    device_path: str, duration: float, output: Optional[Path], scenario: Optional[str], profile: bool
) -> int:
    orchestrator = ScenarioOrchestrator(device_path, duration, ArtifactManager(output), profile=profile)
    summary = orchestrator.run(scenario)
    print_status_table(summary, get_console())
    return EXIT_OK


@app.command()
def run(
    device: Optional[str] = typer.Option(
        None, "--device", help="Capture device to benchmark (default: provision a loopback device)"
    ),
    loopback_num: int = typer.Option(_defaults.loopback_num, "--loopback-num", help="Loopback device number"),
    test_pattern: str = typer.Option(
        _defaults.test_pattern, "--test-pattern", help="Generator pattern: testsrc, smptebars, color=<name>, ..."
    ),
    duration: str = typer.Option(_defaults.duration, "--duration", help="Duration per scenario (e.g. 10s, 1m30s)"),
    output: Optional[Path] = typer.Option(
        None, "--output", help="Output directory (default: results_<timestamp>)"
    ),
    scenario: Optional[str] = typer.Option(None, "--scenario", help="Run one scenario by name (default: all)"),
    list_scenarios: bool = typer.Option(False, "--list", help="List available scenarios and exit"),
    single: bool = typer.Option(False, "--single", help="Run one benchmark with custom parameters"),
    width: int = typer.Option(_defaults.width, "--width", help="Frame width"),
    height: int = typer.Option(_defaults.height, "--height", help="Frame height"),
    fps: int = typer.Option(_defaults.fps, "--fps", help="Frames per second"),
    pixel_format: str = typer.Option(_defaults.pixel_format, "--format", help="Pixel format: MJPEG, YUYV, H264"),
    buffers: int = typer.Option(_defaults.buffer_count, "--buffers", help="Number of capture buffers"),
    cpuprofile: Optional[Path] = typer.Option(None, "--cpuprofile", help="Write CPU profile to file (single mode)"),
    memprofile: Optional[Path] = typer.Option(None, "--memprofile", help="Write heap snapshot to file (single mode)"),
    trace: Optional[Path] = typer.Option(None, "--trace", help="Write execution trace to file (single mode)"),
    no_profile: bool = typer.Option(
        False, "--no-profile", help="Skip CPU, memory and trace profiling of each scenario (multi mode)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log dropped frames and progress"),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    log_format: str = typer.Option("text", "--log-format", help="Log file format: text or json"),
) -> None:
    """Run the capture benchmark."""
    setup_logging(level=log_level, log_file=log_file, log_format=log_format)

    if list_scenarios:
        print_scenario_list(SCENARIOS, get_console())
        raise typer.Exit(code=EXIT_OK)

    try:
        seconds = parse_duration(duration)
        device_path = device or LoopbackProvisioner.device_path(loopback_num)

        # Validate everything before touching the kernel module.
        config = None
        if single:
            config = BenchmarkConfig(
                device_path=device_path,
                width=width,
                height=height,
                pixel_format=pixel_format,
                fps=fps,
                duration=seconds,
                buffer_count=buffers,
                cpu_profile=cpuprofile,
                mem_profile=memprofile,
                trace_file=trace,
                verbose=verbose,
            )
        else:
            select_scenarios(scenario)
        if device is None:
            build_source_filter(test_pattern, width, height, fps)
    except (ConfigurationError, ScenarioNotFoundError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=EXIT_CONFIG)

    try:
        with ExitStack() as stack:
            if device is not None:
                logger.info("Using real device: %s", device_path)
            else:
                logger.info("Setting up loopback device %s...", device_path)
                provisioner = LoopbackProvisioner()
                loopback = stack.enter_context(
                    provisioner.provision(loopback_num, width, height, fps, test_pattern)
                )
                logger.info("Loopback device ready at %s", loopback.device_path)

            if config is not None:
                code = _run_single(config)
            else:
                code = _run_multi(device_path, seconds, output, scenario, profile=not no_profile)
    except (ConfigurationError, ScenarioNotFoundError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=EXIT_CONFIG)
    except BenchmarkError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=EXIT_FAILURE)
    except KeyboardInterrupt:
        raise typer.Exit(code=130)

    raise typer.Exit(code=code)


def main() -> int:
    try:
        app()
    except SystemExit as exc:  # Typer raises SystemExit
        return int(exc.code or 0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
