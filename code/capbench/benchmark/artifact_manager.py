"""Artifact manager for benchmark run outputs.

Owns the naming of every file a run produces so the orchestrator, the CLI and
the tests agree on where results, profiles and the summary live.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class ScenarioArtifacts:
    """Per-scenario artifact paths."""

    result_file: Path
    result_json: Path
    cpu_profile: Path
    mem_profile: Path
    trace_file: Path


class ArtifactManager:
    """Manages the output directory for one benchmark run.

    Layout (flat, one directory per run):
    results_<timestamp>/
      - <scenario>_results.txt   # captured scenario output + report
      - <scenario>_results.json  # BenchmarkResults
      - <scenario>_cpu.prof      # cProfile stats
      - <scenario>_mem.prof      # tracemalloc snapshot
      - <scenario>_trace.out     # Chrome trace-event JSON
      - summary.txt
      - summary.json
    """

    def __init__(self, output_dir: Optional[Path] = None, run_id: Optional[str] = None):
        """Initialize artifact manager.

        Args:
            output_dir: Output directory (defaults to ./results_<run_id>)
            run_id: Optional run ID (defaults to timestamp)
        """
        if run_id is None:
            run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        if output_dir is None:
            output_dir = Path(f"results_{run_id}")

        self.run_id = run_id
        self.run_dir = Path(output_dir)

    def create(self) -> Path:
        """Create the output directory. Separate from __init__ so that
        pre-flight validation can fail without touching the filesystem."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir

    def scenario(self, name: str) -> ScenarioArtifacts:
        return ScenarioArtifacts(
            result_file=self.run_dir / f"{name}_results.txt",
            result_json=self.run_dir / f"{name}_results.json",
            cpu_profile=self.run_dir / f"{name}_cpu.prof",
            mem_profile=self.run_dir / f"{name}_mem.prof",
            trace_file=self.run_dir / f"{name}_trace.out",
        )

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.txt"

    @property
    def summary_json_path(self) -> Path:
        return self.run_dir / "summary.json"

    def __str__(self) -> str:
        return str(self.run_dir)

    def __repr__(self) -> str:
        return f"ArtifactManager(run_dir={self.run_dir}, run_id={self.run_id})"
