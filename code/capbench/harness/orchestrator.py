"""Sequential multi-scenario runs against one capture device.

Each scenario gets its own OutputCapture and private logger, so its text
report contains exactly what that scenario produced. A scenario failure is
recorded in the status table and the run moves on; only pre-flight errors
(unknown scenario name) abort the whole run.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from capbench.benchmark.artifact_manager import ArtifactManager, ScenarioArtifacts
from capbench.benchmark.config import (
    SCENARIOS,
    BenchmarkConfig,
    BenchmarkScenario,
    format_duration,
    select_scenarios,
)
from capbench.benchmark.exceptions import (
    ArtifactWriteError,
    BenchmarkExecutionError,
    ProfilingError,
    UnknownFormatError,
)
from capbench.benchmark.models import RunSummary, ScenarioOutcome, ScenarioStatus
from capbench.benchmark.report import render_results, render_summary
from capbench.harness.executor import BenchmarkExecutor
from capbench.harness.output_capture import OutputCapture
from capbench.utils.logger import (
    attach_scenario_logger,
    detach_scenario_logger,
    get_logger,
    log_benchmark_complete,
    log_benchmark_error,
    log_benchmark_start,
)

logger = get_logger(__name__)


def write_artifact(path: Path, text: str) -> None:
    try:
        path.write_text(text)
    except OSError as exc:
        raise ArtifactWriteError(str(path), exc) from exc


class ScenarioOrchestrator:
    """Runs scenarios in table order and aggregates their reports."""

    def __init__(
        self,
        device_path: str,
        duration: float,
        artifacts: ArtifactManager,
        executor: Optional[BenchmarkExecutor] = None,
        profile: bool = True,
        scenarios: Sequence[BenchmarkScenario] = SCENARIOS,
    ):
        self.device_path = device_path
        self.duration = duration
        self.artifacts = artifacts
        self.executor = executor or BenchmarkExecutor()
        self.profile = profile
        self.scenarios = list(scenarios)

    def run(self, scenario_name: Optional[str] = None) -> RunSummary:
        """Run every scenario in ``self.scenarios``, or just ``scenario_name``.

        Raises:
            ScenarioNotFoundError: before the output directory is created
            ArtifactWriteError: if the summary cannot be written
        """
        scenarios = select_scenarios(scenario_name, self.scenarios)
        self.artifacts.create()

        logger.info("Device:   %s", self.device_path)
        logger.info("Duration: %s", format_duration(self.duration))
        logger.info("Output:   %s", self.artifacts.run_dir)

        outcomes: List[ScenarioOutcome] = []
        total = len(scenarios)
        for index, scenario in enumerate(scenarios, start=1):
            outcomes.append(self.run_scenario(scenario, index, total))

        summary = RunSummary(
            device_path=self.device_path,
            output_dir=str(self.artifacts.run_dir),
            duration=self.duration,
            generated_at=datetime.now().astimezone().isoformat(timespec="seconds"),
            outcomes=outcomes,
        )
        self.write_summary(summary)
        return summary

    def _scenario_config(self, scenario: BenchmarkScenario, paths: ScenarioArtifacts) -> BenchmarkConfig:
        return BenchmarkConfig.for_scenario(
            scenario,
            device_path=self.device_path,
            duration=self.duration,
            cpu_profile=paths.cpu_profile if self.profile else None,
            mem_profile=paths.mem_profile if self.profile else None,
            trace_file=paths.trace_file if self.profile else None,
        )

    def run_scenario(self, scenario: BenchmarkScenario, index: int = 1, total: int = 1) -> ScenarioOutcome:
        log_benchmark_start(logger, f"{scenario.name} ({scenario.describe()})", index, total)
        paths = self.artifacts.scenario(scenario.name)

        try:
            config = self._scenario_config(scenario, paths)
        except UnknownFormatError as exc:
            logger.warning("Unknown format %s, skipping", exc.format_name)
            return ScenarioOutcome(name=scenario.name, status=ScenarioStatus.SKIPPED, message=str(exc))

        capture = OutputCapture(scenario.name)
        scenario_log = attach_scenario_logger(scenario.name, capture)
        results = None
        message = None
        try:
            try:
                results = self.executor.run(config, scenario_log)
            except (BenchmarkExecutionError, ProfilingError) as exc:
                scenario_log.error("Scenario failed: %s", exc)
                message = str(exc)
            else:
                capture.write(render_results(config, results))
        finally:
            detach_scenario_logger(scenario_log)
            capture.close()

        if results is None:
            status = ScenarioStatus.FAILED
            log_benchmark_error(logger, scenario.name, message or "unknown error")
        elif results.has_anomalies:
            status = ScenarioStatus.ANOMALY
            message = "; ".join(results.anomalies)
            logger.warning("Anomaly in %s: %s", scenario.name, message)
        else:
            status = ScenarioStatus.SUCCESS
            log_benchmark_complete(logger, scenario.name, results.avg_fps)

        outcome = ScenarioOutcome(name=scenario.name, status=status, message=message, results=results)
        try:
            write_artifact(paths.result_file, capture.getvalue())
            outcome.result_file = str(paths.result_file)
            if results is not None:
                write_artifact(paths.result_json, results.model_dump_json(indent=2))
                outcome.result_json = str(paths.result_json)
        except ArtifactWriteError as exc:
            logger.warning("Failed to write result file: %s", exc)
            outcome.status = ScenarioStatus.FAILED
            outcome.message = str(exc)
        return outcome

    def _summary_sections(self, summary: RunSummary) -> List[Tuple[str, str]]:
        sections = []
        for outcome in summary.outcomes:
            if outcome.result_file is None:
                continue
            try:
                content = Path(outcome.result_file).read_text()
            except OSError as exc:
                logger.warning("Could not read %s: %s", outcome.result_file, exc)
                continue
            sections.append((outcome.name, content))
        return sections

    def write_summary(self, summary: RunSummary) -> Path:
        generated_at = datetime.fromisoformat(summary.generated_at)
        text = render_summary(self._summary_sections(summary), generated_at)
        write_artifact(self.artifacts.summary_path, text)
        summary.summary_path = str(self.artifacts.summary_path)
        write_artifact(self.artifacts.summary_json_path, summary.model_dump_json(indent=2))
        logger.info("Summary written to: %s", self.artifacts.summary_path)
        return self.artifacts.summary_path
