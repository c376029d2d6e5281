"""Scoped CPU, execution-trace and heap profiling for one capture window.

Only one ProfilingSession may be active per process; the interpreter's
profiling and tracing hooks are process-wide state.
"""

from __future__ import annotations

import cProfile
import gc
import json
import logging
import os
import sys
import threading
import time
import tracemalloc
from pathlib import Path
from typing import Any, Dict, List, Optional

from capbench.benchmark.defaults import get_defaults
from capbench.benchmark.exceptions import ProfilingError
from capbench.utils.logger import get_logger, log_profiling_complete, log_profiling_start

logger = get_logger(__name__)

_session_lock = threading.Lock()
_active_session: Optional[ProfilingSession] = None


def active_session() -> Optional[ProfilingSession]:
    return _active_session


class ExecutionTracer:
    """Records Python call/return events as Chrome trace-event JSON.

    Uses the tracing hook (sys.settrace) so it can run alongside cProfile,
    which owns the profiling hook. Line events are switched off per frame.
    """

    def __init__(self, max_events: int, clock=time.perf_counter):
        self.max_events = max_events
        self._clock = clock
        self._origin = 0.0
        self._pid = os.getpid()
        self._recording = False
        self.events: List[Dict[str, Any]] = []
        self.truncated = False

    def _record(self, phase: str, frame) -> None:
        if not self._recording:
            return
        if len(self.events) >= self.max_events:
            self.truncated = True
            return
        code = frame.f_code
        self.events.append({
            "name": getattr(code, "co_qualname", code.co_name),
            "cat": code.co_filename,
            "ph": phase,
            "ts": (self._clock() - self._origin) * 1e6,
            "pid": self._pid,
            "tid": threading.get_ident(),
        })

    def _global_hook(self, frame, event, arg):
        if event != "call":
            return None
        frame.f_trace_lines = False
        self._record("B", frame)
        return self._local_hook

    def _local_hook(self, frame, event, arg):
        if event == "return":
            self._record("E", frame)
        return self._local_hook

    def start(self) -> None:
        self._origin = self._clock()
        self._recording = True
        threading.settrace(self._global_hook)
        sys.settrace(self._global_hook)

    def stop(self) -> None:
        sys.settrace(None)
        threading.settrace(None)
        self._recording = False

    def write(self, path: Path) -> None:
        document = {
            "traceEvents": self.events,
            "displayTimeUnit": "ms",
            "otherData": {"truncated": self.truncated, "max_events": self.max_events},
        }
        with open(path, "w") as f:
            json.dump(document, f)


class ProfilingSession:
    """CPU profile, execution trace and heap snapshot around a capture window.

    Usage:
        session.start()        # before the capture session starts
        session.stop_timing()  # after it stops: writes CPU profile and trace
        session.finish()       # after the device is closed: heap snapshot
        session.close()        # always; releases anything still held
    """

    def __init__(
        self,
        cpu_profile: Optional[Path] = None,
        mem_profile: Optional[Path] = None,
        trace_file: Optional[Path] = None,
        scenario_logger: Optional[logging.Logger] = None,
        max_trace_events: Optional[int] = None,
    ):
        self.cpu_profile = Path(cpu_profile) if cpu_profile else None
        self.mem_profile = Path(mem_profile) if mem_profile else None
        self.trace_file = Path(trace_file) if trace_file else None
        self.log = scenario_logger or logger
        self.max_trace_events = max_trace_events or get_defaults().trace_max_events

        self._profiler: Optional[cProfile.Profile] = None
        self._tracer: Optional[ExecutionTracer] = None
        self._started_tracemalloc = False
        self._claimed = False

    @property
    def enabled(self) -> bool:
        return any((self.cpu_profile, self.mem_profile, self.trace_file))

    def start(self) -> None:
        if not self.enabled:
            return
        self._claim()
        try:
            if self.mem_profile:
                log_profiling_start(self.log, "memory", str(self.mem_profile))
                if not tracemalloc.is_tracing():
                    tracemalloc.start()
                    self._started_tracemalloc = True
            if self.trace_file:
                log_profiling_start(self.log, "trace", str(self.trace_file))
                self._tracer = ExecutionTracer(self.max_trace_events)
                self._tracer.start()
            if self.cpu_profile:
                log_profiling_start(self.log, "cpu", str(self.cpu_profile))
                self._profiler = cProfile.Profile()
                try:
                    self._profiler.enable()
                except ValueError as exc:
                    self._profiler = None
                    raise ProfilingError(
                        f"Could not start CPU profiler: {exc}", profiler="cpu", reason=str(exc)
                    ) from exc
        except BaseException:
            self.close()
            raise
        if self.cpu_profile:
            self.log.info("CPU profiling enabled: %s", self.cpu_profile)
        if self.trace_file:
            self.log.info("Execution trace enabled: %s", self.trace_file)

    def stop_timing(self) -> None:
        """Stop CPU profiling and tracing and write their artifacts."""
        if self._profiler is not None:
            self._profiler.disable()
            profiler, self._profiler = self._profiler, None
            try:
                profiler.dump_stats(str(self.cpu_profile))
            except OSError as exc:
                raise ProfilingError(
                    f"Could not write CPU profile {self.cpu_profile}: {exc}",
                    profiler="cpu",
                    reason=str(exc),
                ) from exc
            log_profiling_complete(self.log, "CPU", str(self.cpu_profile))

        if self._tracer is not None:
            self._tracer.stop()
            tracer, self._tracer = self._tracer, None
            try:
                tracer.write(self.trace_file)
            except OSError as exc:
                raise ProfilingError(
                    f"Could not write trace {self.trace_file}: {exc}",
                    profiler="trace",
                    reason=str(exc),
                ) from exc
            if tracer.truncated:
                self.log.warning("Trace truncated at %d events", tracer.max_events)
            log_profiling_complete(self.log, "Trace", str(self.trace_file))

    def finish(self) -> None:
        """Write the heap snapshot after a full collection, then release the session."""
        try:
            self.stop_timing()
            if self.mem_profile and tracemalloc.is_tracing():
                gc.collect()
                snapshot = tracemalloc.take_snapshot()
                try:
                    snapshot.dump(str(self.mem_profile))
                except OSError as exc:
                    raise ProfilingError(
                        f"Could not write memory profile {self.mem_profile}: {exc}",
                        profiler="memory",
                        reason=str(exc),
                    ) from exc
                log_profiling_complete(self.log, "Memory", str(self.mem_profile))
        finally:
            self.close()

    def close(self) -> None:
        """Disable every hook this session installed. Safe to call repeatedly."""
        if self._profiler is not None:
            self._profiler.disable()
            self._profiler = None
        if self._tracer is not None:
            self._tracer.stop()
            self._tracer = None
        if self._started_tracemalloc:
            tracemalloc.stop()
            self._started_tracemalloc = False
        self._release()

    def _claim(self) -> None:
        global _active_session
        with _session_lock:
            if _active_session is not None:
                raise ProfilingError(
                    "Another profiling session is already active",
                    profiler="session",
                    reason="concurrent profiling sessions are not supported",
                )
            _active_session = self
            self._claimed = True

    def _release(self) -> None:
        global _active_session
        with _session_lock:
            if self._claimed and _active_session is self:
                _active_session = None
            self._claimed = False
