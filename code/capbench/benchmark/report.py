"""Human-readable rendering of results, summaries and status tables."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table
from rich.text import Text

from capbench.benchmark.config import BenchmarkConfig, BenchmarkScenario, format_duration
from capbench.benchmark.models import BenchmarkResults, RunSummary, ScenarioStatus

SEPARATOR = "=" * 70
MB = 1024 * 1024

_STATUS_STYLES = {
    ScenarioStatus.SUCCESS: "green",
    ScenarioStatus.ANOMALY: "yellow",
    ScenarioStatus.FAILED: "red",
    ScenarioStatus.SKIPPED: "dim",
}


def render_results(config: BenchmarkConfig, r: BenchmarkResults) -> str:
    """Render one scenario's results as the plain-text report."""
    lines = [
        "",
        SEPARATOR,
        "BENCHMARK RESULTS",
        SEPARATOR,
        "",
        "Configuration:",
        f"  Device:        {config.device_path}",
        f"  Resolution:    {config.width}x{config.height}",
        f"  Format:        {config.pixel_format}",
        f"  Target FPS:    {config.fps}",
        f"  Duration:      {format_duration(config.duration)}",
        f"  Buffers:       {config.buffer_count}",
        "",
        "Capture Statistics:",
        f"  Frames Captured:   {r.frames_captured}",
        f"  Frames Dropped:    {r.frames_dropped}",
        f"  Actual Duration:   {format_duration(r.wall_duration)}",
        f"  Average FPS:       {r.avg_fps:.2f}",
        f"  Total Data:        {r.total_bytes / MB:.2f} MB",
        f"  Avg Bytes/Frame:   {r.avg_bytes_per_frame}",
        "",
        "Timing Statistics:",
        f"  Min Frame Time:    {format_duration(r.min_frame_time)}",
        f"  Avg Frame Time:    {format_duration(r.avg_frame_time)}",
        f"  Max Frame Time:    {format_duration(r.max_frame_time)}",
        f"  Std Frame Time:    {format_duration(r.std_frame_time)}",
    ]
    for percentile, value in sorted(r.frame_time_percentiles.items()):
        label = f"P{percentile:g} Frame Time:"
        lines.append(f"  {label:<19}{format_duration(value)}")
    if config.fps > 0:
        lines.append(f"  Target Frame Time: {format_duration(config.target_frame_time)}")
    if config.trace_file:
        lines.append("  Note: execution trace was active, frame times include tracing overhead")

    lines += [
        "",
        "Memory Statistics:",
        f"  RSS Growth:        {r.mem_alloc_bytes / MB:.2f} MB",
    ]
    if r.frames_captured > 0:
        lines.append(f"  Growth per Frame:  {r.mem_alloc_bytes / r.frames_captured / MB:.2f} MB")
    lines.append(f"  Allocated Blocks:  {r.mem_alloc_objects}")
    if r.frames_captured > 0:
        lines.append(f"  Blocks per Frame:  {r.mem_alloc_objects / r.frames_captured:.0f}")
    lines += [
        f"  GC Runs:           {r.gc_count}",
        f"  GC Pause Total:    {format_duration(r.gc_pause_total)}",
    ]
    if r.gc_count > 0:
        lines.append(f"  Avg GC Pause:      {format_duration(r.gc_pause_total / r.gc_count)}")

    lines += ["", "Performance Metrics:"]
    if r.avg_fps > 0 and r.frames_captured > 0:
        lines.append(f"  Time/Frame:        {format_duration(r.wall_duration / r.frames_captured)}")
        lines.append(f"  Throughput:        {r.total_bytes / MB / r.wall_duration:.2f} MB/s")

    if r.anomalies:
        lines += ["", "Anomalies:"]
        lines += [f"  - {anomaly}" for anomaly in r.anomalies]

    lines += ["", SEPARATOR]

    if config.cpu_profile:
        lines += ["", f"CPU Profile: {config.cpu_profile}", f"Analyze with: python -m pstats {config.cpu_profile}"]
    if config.mem_profile:
        lines += [
            f"Memory Profile: {config.mem_profile}",
            f"Analyze with: tracemalloc.Snapshot.load('{config.mem_profile}')",
        ]
    if config.trace_file:
        lines += [f"Trace File: {config.trace_file}", "Analyze with: chrome://tracing or https://ui.perfetto.dev"]

    return "\n".join(lines) + "\n"


def render_summary(sections: Iterable[Tuple[str, str]], generated_at: Optional[datetime] = None) -> str:
    """Concatenate per-scenario result text under a summary header.

    ``sections`` is (scenario name, result file contents) in scenario order.
    """
    if generated_at is None:
        generated_at = datetime.now(timezone.utc).astimezone()
    parts = ["# Benchmark Summary\n\n", f"Generated: {generated_at.isoformat(timespec='seconds')}\n\n"]
    for name, content in sections:
        parts.append(f"## {name}\n\n{content}\n\n")
    return "".join(parts)


def print_scenario_list(scenarios: Sequence[BenchmarkScenario], console: Console) -> None:
    table = Table(title="Available benchmark scenarios")
    table.add_column("Scenario", style="cyan")
    table.add_column("Resolution")
    table.add_column("FPS", justify="right")
    table.add_column("Format")
    for s in scenarios:
        table.add_row(s.name, f"{s.width}x{s.height}", str(s.fps), s.pixel_format)
    console.print(table)


def print_status_table(summary: RunSummary, console: Console) -> None:
    table = Table(title="Benchmark Results")
    table.add_column("Scenario", style="cyan")
    table.add_column("Status")
    table.add_column("Avg FPS", justify="right")
    table.add_column("Dropped", justify="right")
    table.add_column("Detail")
    for outcome in summary.outcomes:
        style = _STATUS_STYLES.get(outcome.status, "")
        fps = dropped = "-"
        if outcome.results is not None:
            fps = f"{outcome.results.avg_fps:.2f}"
            dropped = str(outcome.results.frames_dropped)
        table.add_row(
            outcome.name,
            Text(outcome.status.value, style=style),
            fps,
            dropped,
            Text(outcome.message or ""),
        )
    console.print(table)
    console.print(f"Output directory: {summary.output_dir}")
    if summary.summary_path:
        console.print(f"Summary: {summary.summary_path}")
