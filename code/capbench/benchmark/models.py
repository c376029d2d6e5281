"""Pydantic models for benchmark data structures.

Provides type-safe, validated data models for capture results and run summaries.
All models include schemaVersion for forward compatibility.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


NO_FRAMES_ANOMALY = "no frames captured"
STREAM_ENDED_EARLY_ANOMALY = "stream ended before the capture deadline"


class BenchmarkResults(BaseModel):
    """Metrics derived from a single scenario run.

    Durations are in seconds. Frame-time statistics exclude the interval that
    ends at the first captured frame.
    """

    frames_captured: int = Field(0, description="Frames delivered with data")
    frames_dropped: int = Field(0, description="Frames delivered empty")
    wall_duration: float = Field(0.0, description="Wall time of the capture loop in seconds")
    avg_fps: float = Field(0.0, description="frames_captured / wall_duration")
    min_frame_time: float = Field(0.0, description="Shortest steady-state frame interval in seconds")
    max_frame_time: float = Field(0.0, description="Longest steady-state frame interval in seconds")
    avg_frame_time: float = Field(0.0, description="Mean steady-state frame interval in seconds")
    std_frame_time: float = Field(0.0, description="Standard deviation of steady-state frame intervals")
    frame_time_percentiles: Dict[float, float] = Field(
        default_factory=dict, description="Percentile -> frame interval in seconds"
    )
    total_bytes: int = Field(0, description="Sum of captured frame sizes")
    avg_bytes_per_frame: int = Field(0, description="total_bytes // frames_captured")
    mem_alloc_bytes: int = Field(0, description="Resident set growth over the capture window")
    mem_alloc_objects: int = Field(0, description="Allocated block growth over the capture window")
    gc_count: int = Field(0, description="Garbage collector runs during the capture window")
    gc_pause_total: float = Field(0.0, description="Total collector pause in seconds")
    anomalies: List[str] = Field(default_factory=list, description="Conditions worth flagging in reports")

    schemaVersion: str = Field("1.0", description="Schema version for forward compatibility")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "frames_captured": 60,
                "frames_dropped": 0,
                "wall_duration": 2.0,
                "avg_fps": 30.0,
                "min_frame_time": 0.031,
                "max_frame_time": 0.036,
                "avg_frame_time": 0.0333,
                "total_bytes": 36864000,
                "avg_bytes_per_frame": 614400,
                "schemaVersion": "1.0",
            }
        }
    )

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)


class ScenarioStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ANOMALY = "ANOMALY"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ScenarioOutcome(BaseModel):
    """Status row for one scenario in a multi-scenario run."""

    name: str
    status: ScenarioStatus
    result_file: Optional[str] = Field(None, description="Text report path, if it was written")
    result_json: Optional[str] = Field(None, description="JSON results path, if it was written")
    message: Optional[str] = Field(None, description="Reason for SKIPPED/FAILED/ANOMALY")
    results: Optional[BenchmarkResults] = None

    schemaVersion: str = Field("1.0", description="Schema version for forward compatibility")


class RunSummary(BaseModel):
    """Outcome of a whole orchestrated run, in scenario order."""

    device_path: str
    output_dir: str
    duration: float
    generated_at: str
    summary_path: Optional[str] = None
    outcomes: List[ScenarioOutcome] = Field(default_factory=list)

    schemaVersion: str = Field("1.0", description="Schema version for forward compatibility")

    def status_map(self) -> Dict[str, ScenarioStatus]:
        return {outcome.name: outcome.status for outcome in self.outcomes}

    @property
    def all_succeeded(self) -> bool:
        return all(outcome.status == ScenarioStatus.SUCCESS for outcome in self.outcomes)
