"""Tests for BenchmarkExecutor against a fake capture device."""

import json
import logging
import pstats
import sys
import tracemalloc
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from capture_fakes import make_config
from capbench.benchmark.exceptions import DeviceOpenError, ProfilingError, SessionStartError
from capbench.benchmark.models import NO_FRAMES_ANOMALY, STREAM_ENDED_EARLY_ANOMALY
from capbench.harness.executor import BenchmarkExecutor
from capbench.profiling import session as profiling_session
from capbench.profiling.session import ProfilingSession


FRAME = b"\xff\xd8" + b"\x00" * 1022


def test_run_collects_statistics(fake_device_factory):
    opener = fake_device_factory([FRAME, FRAME, b"", FRAME])
    results = BenchmarkExecutor(device_opener=opener).run(make_config())

    assert results.frames_captured == 3
    assert results.frames_dropped == 1
    assert results.total_bytes == 3 * len(FRAME)
    assert results.avg_bytes_per_frame == len(FRAME)
    assert results.anomalies == []


def test_device_lifecycle_order(fake_device_factory):
    opener = fake_device_factory([FRAME])
    BenchmarkExecutor(device_opener=opener).run(make_config())

    device = opener.opened[0]
    assert device.events == ["start", "stop", "close"]
    assert device.closed
    assert device.cancel.is_set()


def test_logs_requested_and_negotiated_format(fake_device_factory, caplog):
    opener = fake_device_factory([FRAME], negotiated_format="YUYV")
    log = logging.getLogger("test.executor.format")

    with caplog.at_level(logging.INFO, logger="test.executor.format"):
        BenchmarkExecutor(device_opener=opener).run(make_config(), log)

    text = caplog.text
    assert "Opening device: /dev/video50" in text
    assert "Format: 640x480 @ 30 fps" in text
    assert "Actual format: 640x480, bytesperline=1280, sizeimage=614400" in text
    assert "negotiated YUYV" in text


def test_zero_frames_reported_as_anomaly(fake_device_factory):
    opener = fake_device_factory([b"", b""])
    results = BenchmarkExecutor(device_opener=opener).run(make_config())

    assert results.frames_captured == 0
    assert results.frames_dropped == 2
    assert NO_FRAMES_ANOMALY in results.anomalies


def test_deadline_ends_capture(fake_device_factory):
    # a stream that never ends on its own
    class EndlessPayloads:
        def __iter__(self):
            while True:
                yield FRAME

    opener = fake_device_factory()
    executor = BenchmarkExecutor(device_opener=opener)

    def endless_opener(path, config, log=None):
        device = opener(path, config, log=log)
        device.payloads = EndlessPayloads()
        return device

    executor._open_device = endless_opener
    results = executor.run(make_config(duration=0.2))

    assert results.frames_captured > 0
    assert results.wall_duration == pytest.approx(0.2, abs=0.5)
    assert opener.opened[0].closed


def test_open_failure_propagates(fake_device_factory):
    def failing_opener(path, config, log=None):
        raise DeviceOpenError("no such device", device_path=path, stage="open")

    with pytest.raises(DeviceOpenError) as exc_info:
        BenchmarkExecutor(device_opener=failing_opener).run(make_config())

    assert exc_info.value.stage == "open"
    assert profiling_session.active_session() is None


def test_start_failure_releases_device_and_profiler(fake_device_factory, tmp_path):
    error = SessionStartError("VIDIOC_STREAMON failed", device_path="/dev/video50", stage="start")
    opener = fake_device_factory([FRAME], start_error=error)
    config = make_config(cpu_profile=tmp_path / "cpu.prof")

    with pytest.raises(SessionStartError):
        BenchmarkExecutor(device_opener=opener).run(config)

    assert opener.opened[0].closed
    assert profiling_session.active_session() is None


def test_profiling_artifacts_written(fake_device_factory, tmp_path):
    opener = fake_device_factory([FRAME] * 5)
    config = make_config(
        cpu_profile=tmp_path / "cpu.prof",
        mem_profile=tmp_path / "mem.prof",
        trace_file=tmp_path / "trace.out",
    )

    BenchmarkExecutor(device_opener=opener).run(config)

    stats = pstats.Stats(str(config.cpu_profile))
    assert stats.total_calls > 0

    snapshot = tracemalloc.Snapshot.load(str(config.mem_profile))
    assert snapshot.traces is not None
    assert not tracemalloc.is_tracing()

    trace = json.loads(config.trace_file.read_text())
    assert trace["traceEvents"]
    phases = {event["ph"] for event in trace["traceEvents"]}
    assert phases <= {"B", "E"}
    names = {event["name"] for event in trace["traceEvents"]}
    assert any("consume" in name for name in names)

    assert profiling_session.active_session() is None


def test_concurrent_profiling_sessions_rejected(fake_device_factory, tmp_path):
    holder = ProfilingSession(cpu_profile=tmp_path / "holder.prof")
    holder.start()
    try:
        opener = fake_device_factory([FRAME])
        config = make_config(cpu_profile=tmp_path / "cpu.prof")
        with pytest.raises(ProfilingError) as exc_info:
            BenchmarkExecutor(device_opener=opener).run(config)
        assert exc_info.value.profiler == "session"
        assert opener.opened[0].closed
    finally:
        holder.close()

    assert profiling_session.active_session() is None


def test_unwritable_profile_is_a_profiling_error(fake_device_factory, tmp_path):
    opener = fake_device_factory([FRAME])
    config = make_config(cpu_profile=tmp_path / "missing-dir" / "cpu.prof")

    with pytest.raises(ProfilingError) as exc_info:
        BenchmarkExecutor(device_opener=opener).run(config)

    assert exc_info.value.profiler == "cpu"
    assert opener.opened[0].closed
    assert profiling_session.active_session() is None


def test_stream_ending_before_deadline_is_an_anomaly(fake_device_factory, caplog):
    opener = fake_device_factory([FRAME, FRAME], ends_early=True)
    log = logging.getLogger("test.executor.early")

    with caplog.at_level(logging.WARNING, logger="test.executor.early"):
        results = BenchmarkExecutor(device_opener=opener).run(make_config(duration=5.0), log)

    assert results.frames_captured == 2
    assert results.anomalies == [STREAM_ENDED_EARLY_ANOMALY]
    assert "before the 5s deadline" in caplog.text
    assert opener.opened[0].closed


def test_opener_receives_the_run_logger(fake_device_factory):
    opener = fake_device_factory([FRAME])
    log = logging.getLogger("test.executor.opener")

    BenchmarkExecutor(device_opener=opener).run(make_config(), log)

    assert opener.opened[0].log is log


def test_format_readback_failure_releases_device(fake_device_factory):
    error = DeviceOpenError("failed to read format", device_path="/dev/video50", stage="format")
    opener = fake_device_factory([FRAME], format_error=error)

    with pytest.raises(DeviceOpenError) as exc_info:
        BenchmarkExecutor(device_opener=opener).run(make_config())

    assert exc_info.value.stage == "format"
    assert opener.opened[0].closed
    assert opener.opened[0].events == ["close"]
