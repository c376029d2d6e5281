"""Frame-stream statistics and process memory sampling.

StatisticsCollector only does counter updates and one clock read per frame;
everything heavier (numpy reductions, memory deltas) happens after the stream
ends so it cannot perturb the timings being measured.
"""

from __future__ import annotations

import gc
import logging
import sys
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np
import psutil

from capbench.benchmark.defaults import get_defaults
from capbench.benchmark.models import NO_FRAMES_ANOMALY, BenchmarkResults
from capbench.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MemorySample:
    """Point-in-time view of process memory and collector activity."""

    rss_bytes: int
    allocated_blocks: int
    gc_collections: int

    @classmethod
    def take(cls) -> MemorySample:
        return cls(
            rss_bytes=psutil.Process().memory_info().rss,
            allocated_blocks=sys.getallocatedblocks(),
            gc_collections=sum(stat["collections"] for stat in gc.get_stats()),
        )


class GcPauseTracker:
    """Accumulates time spent inside the cyclic garbage collector.

    Registered in ``gc.callbacks`` only while used as a context manager.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self._clock = clock
        self._started_at: Optional[float] = None
        self.total_pause = 0.0
        self.collections = 0

    def _callback(self, phase: str, info: dict) -> None:
        if phase == "start":
            self._started_at = self._clock()
        elif phase == "stop" and self._started_at is not None:
            self.total_pause += self._clock() - self._started_at
            self.collections += 1
            self._started_at = None

    def __enter__(self) -> GcPauseTracker:
        gc.callbacks.append(self._callback)
        return self

    def __exit__(self, exc_type, exc_value, tb) -> bool:
        if self._callback in gc.callbacks:
            gc.callbacks.remove(self._callback)
        return False


class StatisticsCollector:
    """Reduce a frame sequence to BenchmarkResults.

    An empty payload is a dropped frame. The interval recorded for a captured
    frame is measured from the previous arrival, dropped or not, and the
    first captured frame's interval is excluded from the timing statistics
    because it includes stream start-up.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        percentiles: Optional[Sequence[float]] = None,
        scenario_logger: Optional[logging.Logger] = None,
        verbose: bool = False,
        progress_every: Optional[int] = None,
    ):
        defaults = get_defaults()
        self._clock = clock
        self.percentiles = tuple(percentiles if percentiles is not None else defaults.percentiles)
        self.log = scenario_logger or logger
        self.verbose = verbose
        self.progress_every = progress_every or defaults.verbose_progress_every

        self.frames_captured = 0
        self.frames_dropped = 0
        self.total_bytes = 0
        self.frame_times: List[float] = []
        self.elapsed = 0.0

    def consume(self, frames: Iterable[bytes]) -> None:
        """Drain ``frames`` until it ends, then record the elapsed wall time."""
        clock = self._clock
        start = clock()
        last = start
        for payload in frames:
            now = clock()
            interval = now - last
            last = now
            if not payload:
                self.frames_dropped += 1
                if self.verbose:
                    self.log.info("Frame %d: DROPPED", self.frames_captured + self.frames_dropped)
                continue
            self.frames_captured += 1
            self.total_bytes += len(payload)
            self.frame_times.append(interval)
            if self.verbose and self.frames_captured % self.progress_every == 0:
                self.log.info(
                    "Captured %d frames (%.1f fps)",
                    self.frames_captured,
                    self.frames_captured / max(now - start, 1e-9),
                )
        self.elapsed = clock() - start

    def results(
        self,
        before: Optional[MemorySample] = None,
        after: Optional[MemorySample] = None,
        gc_pause_total: float = 0.0,
    ) -> BenchmarkResults:
        results = BenchmarkResults(
            frames_captured=self.frames_captured,
            frames_dropped=self.frames_dropped,
            wall_duration=self.elapsed,
            total_bytes=self.total_bytes,
            gc_pause_total=gc_pause_total,
        )

        if self.frames_captured > 0 and self.elapsed > 0:
            results.avg_fps = self.frames_captured / self.elapsed
        if self.frames_captured > 0:
            results.avg_bytes_per_frame = self.total_bytes // self.frames_captured

        steady = np.asarray(self.frame_times[1:], dtype=np.float64)
        if steady.size > 0:
            results.min_frame_time = float(steady.min())
            results.max_frame_time = float(steady.max())
            results.avg_frame_time = float(steady.mean())
            results.std_frame_time = float(steady.std())
            values = np.percentile(steady, self.percentiles)
            results.frame_time_percentiles = {
                float(p): float(v) for p, v in zip(self.percentiles, values)
            }

        if before is not None and after is not None:
            results.mem_alloc_bytes = max(0, after.rss_bytes - before.rss_bytes)
            results.mem_alloc_objects = max(0, after.allocated_blocks - before.allocated_blocks)
            results.gc_count = max(0, after.gc_collections - before.gc_collections)

        if self.frames_captured == 0:
            results.anomalies.append(NO_FRAMES_ANOMALY)
            self.log.warning("No frames captured in %.2fs", self.elapsed)

        return results
