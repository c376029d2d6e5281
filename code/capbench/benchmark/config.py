"""Scenario table and resolved run configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from capbench.benchmark.defaults import get_defaults
from capbench.benchmark.exceptions import (
    ConfigurationError,
    ScenarioNotFoundError,
    UnknownFormatError,
)


SUPPORTED_PIXEL_FORMATS = ("MJPEG", "YUYV", "H264")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


@dataclass(frozen=True)
class BenchmarkScenario:
    """A named, fixed (resolution, frame rate, pixel format) configuration."""

    name: str
    width: int
    height: int
    fps: int
    pixel_format: str

    def describe(self) -> str:
        return f"{self.width}x{self.height} @ {self.fps} fps ({self.pixel_format})"


SCENARIOS: List[BenchmarkScenario] = [
    # Baseline benchmarks
    BenchmarkScenario("baseline_480p_mjpeg", 640, 480, 30, "MJPEG"),
    BenchmarkScenario("baseline_720p_mjpeg", 1280, 720, 30, "MJPEG"),
    BenchmarkScenario("baseline_1080p_mjpeg", 1920, 1080, 30, "MJPEG"),
    # Format comparison (at 480p)
    BenchmarkScenario("format_480p_yuyv", 640, 480, 30, "YUYV"),
    # Frame rate tests (at 720p)
    BenchmarkScenario("fps_720p_15fps", 1280, 720, 15, "MJPEG"),
    BenchmarkScenario("fps_720p_30fps", 1280, 720, 30, "MJPEG"),
    BenchmarkScenario("fps_720p_60fps", 1280, 720, 60, "MJPEG"),
]


def select_scenarios(
    scenario_name: Optional[str] = None,
    scenarios: Sequence[BenchmarkScenario] = SCENARIOS,
) -> List[BenchmarkScenario]:
    """Return the scenarios to run, preserving table order.

    Raises:
        ScenarioNotFoundError: if ``scenario_name`` is set and not in the table
    """
    if not scenario_name:
        return list(scenarios)
    for scenario in scenarios:
        if scenario.name == scenario_name:
            return [scenario]
    raise ScenarioNotFoundError(scenario_name)


def validate_pixel_format(name: str) -> str:
    """Return the canonical format name or raise UnknownFormatError."""
    if name not in SUPPORTED_PIXEL_FORMATS:
        raise UnknownFormatError(name)
    return name


def parse_duration(text: str) -> float:
    """Parse a duration string such as ``10s``, ``1m30s`` or ``500ms`` into seconds."""
    value = (text or "").strip()
    if value == "0":
        return 0.0
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if not value or position != len(value):
        raise ConfigurationError(
            f"Invalid duration: {text}",
            config_key="duration",
            config_value=text,
            reason="expected a sequence of <number><unit> with units ns, us, ms, s, m, h",
        )
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly: ``2s``, ``33.333ms``, ``1m30s``."""
    if seconds == 0:
        return "0s"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.3f}µs"
    if seconds < 1.0:
        return f"{seconds * 1e3:.3f}ms"
    if seconds < 60.0:
        return f"{seconds:.6g}s"
    minutes, rest = divmod(seconds, 60.0)
    if minutes < 60:
        return f"{int(minutes)}m{rest:.6g}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h{int(minutes)}m{rest:.6g}s"


@dataclass(frozen=True)
class BenchmarkConfig:
    """Configuration for one scenario run.

    Fully resolved before a run starts and never mutated afterwards.
    """

    device_path: str
    width: int
    height: int
    pixel_format: str
    fps: int
    duration: float
    buffer_count: int
    cpu_profile: Optional[Path] = None
    mem_profile: Optional[Path] = None
    trace_file: Optional[Path] = None
    verbose: bool = False

    def __post_init__(self):
        validate_pixel_format(self.pixel_format)
        for key in ("width", "height", "fps", "buffer_count"):
            value = getattr(self, key)
            if value <= 0:
                raise ConfigurationError(
                    f"{key} must be positive, got {value}",
                    config_key=key,
                    config_value=value,
                    reason="must be positive",
                )
        if self.duration <= 0:
            raise ConfigurationError(
                f"duration must be positive, got {self.duration}",
                config_key="duration",
                config_value=self.duration,
                reason="must be positive",
            )

    @property
    def target_frame_time(self) -> float:
        return 1.0 / self.fps

    @classmethod
    def for_scenario(
        cls,
        scenario: BenchmarkScenario,
        device_path: str,
        duration: float,
        cpu_profile: Optional[Path] = None,
        mem_profile: Optional[Path] = None,
        trace_file: Optional[Path] = None,
    ) -> BenchmarkConfig:
        """Build the config for one row of the scenario table."""
        return cls(
            device_path=device_path,
            width=scenario.width,
            height=scenario.height,
            pixel_format=scenario.pixel_format,
            fps=scenario.fps,
            duration=duration,
            buffer_count=get_defaults().buffer_count,
            cpu_profile=cpu_profile,
            mem_profile=mem_profile,
            trace_file=trace_file,
            verbose=False,
        )
