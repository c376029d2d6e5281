"""Run a single capture scenario end to end."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack
from typing import Callable, Optional

from capbench.benchmark.config import BenchmarkConfig, format_duration
from capbench.benchmark.models import STREAM_ENDED_EARLY_ANOMALY, BenchmarkResults
from capbench.capture.device import CaptureDevice, open_device
from capbench.harness.statistics import GcPauseTracker, MemorySample, StatisticsCollector
from capbench.profiling.session import ProfilingSession
from capbench.utils.logger import get_logger

logger = get_logger(__name__)


class BenchmarkExecutor:
    """Opens the device, captures for the configured duration, returns metrics.

    Profiling and memory sampling bracket only the capture window. Whatever
    was acquired is released if any step fails.
    """

    def __init__(
        self,
        device_opener: Callable[..., CaptureDevice] = open_device,
        clock: Callable[[], float] = time.perf_counter,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self._open_device = device_opener
        self._clock = clock
        self._timer_factory = timer_factory

    def run(self, config: BenchmarkConfig, log: Optional[logging.Logger] = None) -> BenchmarkResults:
        """Run one capture against ``config.device_path``.

        Args:
            config: Fully resolved configuration
            log: Logger to report progress to (the scenario's private logger
                when orchestrated)

        Raises:
            DeviceOpenError: device could not be opened or configured
            SessionStartError: streaming could not be started
            ProfilingError: a requested profiler could not start or write
        """
        log = log or logger
        log.info("Opening device: %s", config.device_path)
        log.info("Format: %dx%d @ %d fps", config.width, config.height, config.fps)
        log.info("Duration: %s, Buffers: %d", format_duration(config.duration), config.buffer_count)

        collector = StatisticsCollector(clock=self._clock, scenario_logger=log, verbose=config.verbose)
        gc_pause = GcPauseTracker()

        with ExitStack() as stack:
            device = self._open_device(config.device_path, config, log=log)
            stack.callback(device.close)

            fmt = device.get_pixel_format()
            log.info(
                "Actual format: %dx%d, bytesperline=%d, sizeimage=%d",
                fmt.width, fmt.height, fmt.bytes_per_line, fmt.size_image,
            )
            if fmt.pixel_format != config.pixel_format:
                log.warning("Requested %s but device negotiated %s", config.pixel_format, fmt.pixel_format)

            before = MemorySample.take()

            session = ProfilingSession(
                cpu_profile=config.cpu_profile,
                mem_profile=config.mem_profile,
                trace_file=config.trace_file,
                scenario_logger=log,
            )
            stack.callback(session.close)
            session.start()

            cancel = threading.Event()
            timer = self._timer_factory(config.duration, cancel.set)
            timer.daemon = True
            stack.callback(timer.cancel)

            with gc_pause:
                device.start(cancel)
                timer.start()
                log.info("Capturing frames...")
                try:
                    collector.consume(device.frames())
                    # the deadline sets cancel; anything else means the stream died
                    ended_early = not cancel.is_set()
                finally:
                    timer.cancel()
                    device.stop()

            session.stop_timing()
            after = MemorySample.take()
            device.close()
            session.finish()

        results = collector.results(before, after, gc_pause.total_pause)
        if ended_early:
            results.anomalies.append(STREAM_ENDED_EARLY_ANOMALY)
            log.warning(
                "Stream ended after %s, before the %s deadline",
                format_duration(results.wall_duration),
                format_duration(config.duration),
            )
        log.info(
            "Captured %d frames (%d dropped) in %s",
            results.frames_captured,
            results.frames_dropped,
            format_duration(results.wall_duration),
        )
        return results
