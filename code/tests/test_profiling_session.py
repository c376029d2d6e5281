"""Tests for ProfilingSession and ExecutionTracer."""

import json
import sys
import threading
import tracemalloc
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from capbench.benchmark.exceptions import ProfilingError
from capbench.profiling.session import ExecutionTracer, ProfilingSession, active_session


def _work(n):
    return sum(i * i for i in range(n))


def test_disabled_session_is_a_no_op():
    session = ProfilingSession()
    assert not session.enabled
    session.start()
    assert active_session() is None
    session.finish()


def test_session_claims_and_releases_singleton(tmp_path):
    session = ProfilingSession(cpu_profile=tmp_path / "cpu.prof")
    session.start()
    assert active_session() is session

    other = ProfilingSession(trace_file=tmp_path / "trace.out")
    with pytest.raises(ProfilingError) as exc_info:
        other.start()
    assert exc_info.value.profiler == "session"
    assert active_session() is session

    _work(1000)
    session.finish()
    assert active_session() is None
    assert (tmp_path / "cpu.prof").stat().st_size > 0


def test_close_without_writing(tmp_path):
    session = ProfilingSession(cpu_profile=tmp_path / "cpu.prof", mem_profile=tmp_path / "mem.prof")
    session.start()
    session.close()
    session.close()

    assert active_session() is None
    assert not (tmp_path / "cpu.prof").exists()
    assert not (tmp_path / "mem.prof").exists()


def test_heap_snapshot_written_after_timing_stops(tmp_path):
    already_tracing = tracemalloc.is_tracing()
    session = ProfilingSession(mem_profile=tmp_path / "mem.prof")
    session.start()
    assert tracemalloc.is_tracing()
    blob = [bytearray(1024) for _ in range(100)]
    session.stop_timing()
    session.finish()

    assert len(blob) == 100
    assert tracemalloc.Snapshot.load(str(tmp_path / "mem.prof")) is not None
    assert tracemalloc.is_tracing() == already_tracing


def test_tracer_records_other_threads(tmp_path):
    tracer = ExecutionTracer(max_events=10_000)
    tracer.start()
    try:
        worker = threading.Thread(target=_work, args=(10,))
        worker.start()
        worker.join()
        _work(10)
    finally:
        tracer.stop()

    thread_ids = {event["tid"] for event in tracer.events if event["name"] == "_work"}
    assert len(thread_ids) == 2

    path = tmp_path / "trace.out"
    tracer.write(path)
    document = json.loads(path.read_text())
    assert document["displayTimeUnit"] == "ms"
    assert document["otherData"]["truncated"] is False


def test_tracer_is_bounded():
    tracer = ExecutionTracer(max_events=5)
    tracer.start()
    try:
        for _ in range(10):
            _work(1)
    finally:
        tracer.stop()

    assert len(tracer.events) == 5
    assert tracer.truncated


def test_tracer_stops_recording():
    tracer = ExecutionTracer(max_events=1000)
    tracer.start()
    tracer.stop()
    count = len(tracer.events)
    _work(10)
    assert len(tracer.events) == count
