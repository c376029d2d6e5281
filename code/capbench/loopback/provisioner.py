"""Disposable v4l2loopback capture devices fed by an ffmpeg test source.

A VirtualDevice owns two external resources: the loaded kernel module and the
generator process writing frames into it. Provisioning acquires them in order
and rolls back whatever was acquired if a later step fails; release tears them
down generator first, then module.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import time
from enum import Enum
from typing import IO, Callable, List, Optional

from capbench.benchmark.defaults import BenchmarkDefaults, get_defaults
from capbench.benchmark.exceptions import (
    ConfigurationError,
    DeviceAlreadyExistsError,
    DeviceNotCreatedError,
    GeneratorStartError,
    LoopbackError,
    ModuleLoadError,
    ModuleUnloadError,
    PrerequisiteMissingError,
)
from capbench.utils.logger import get_logger

logger = get_logger(__name__)


class LoopbackState(str, Enum):
    UNPROVISIONED = "unprovisioned"
    PROVISIONED = "provisioned"
    RELEASED = "released"


def build_source_filter(pattern: str, width: int, height: int, fps: int) -> str:
    """Translate a test pattern into an ffmpeg lavfi source expression.

    ``testsrc`` (or empty) and other bare names select a built-in generator;
    ``color=<name>`` selects a solid color.
    """
    pattern = (pattern or "").strip()
    if pattern.startswith("color="):
        color = pattern[len("color="):]
        if not color:
            raise ConfigurationError(
                f"Invalid test pattern: {pattern}",
                config_key="test_pattern",
                config_value=pattern,
                reason="color= requires a color name",
            )
        return f"color=c={color}:s={width}x{height}:r={fps}"
    if "=" in pattern:
        raise ConfigurationError(
            f"Invalid test pattern: {pattern}",
            config_key="test_pattern",
            config_value=pattern,
            reason="only color=<name> is supported as a key=value pattern",
        )
    name = pattern or "testsrc"
    return f"{name}=size={width}x{height}:rate={fps}"


class VirtualDevice:
    """Handle for a provisioned loopback device.

    Use as a context manager; exit always releases and never raises release
    errors, so teardown cannot mask the result of the run it brackets.
    """

    def __init__(
        self,
        device_path: str,
        device_index: int,
        provisioner: LoopbackProvisioner,
    ):
        self.device_path = device_path
        self.device_index = device_index
        self.generator: Optional[subprocess.Popen] = None
        self._generator_log: Optional[IO[bytes]] = None
        self._provisioner = provisioner
        self._state = LoopbackState.UNPROVISIONED

    @property
    def state(self) -> LoopbackState:
        return self._state

    def attach(self, generator: subprocess.Popen, generator_log: IO[bytes]) -> None:
        """Take ownership of a running generator; the device is now usable."""
        if self._state is not LoopbackState.UNPROVISIONED:
            raise RuntimeError(f"{self.device_path} is already {self._state.value}")
        self.generator = generator
        self._generator_log = generator_log
        self._state = LoopbackState.PROVISIONED

    def release(self) -> None:
        """Stop the generator and unload the module.

        Idempotent: only the first call does anything. Raises ModuleUnloadError
        if the module could not be unloaded.
        """
        if self._state is not LoopbackState.PROVISIONED:
            return
        self._state = LoopbackState.RELEASED
        logger.info("Releasing loopback device %s", self.device_path)
        try:
            if self.generator is not None:
                self._provisioner.stop_generator(self.generator)
        finally:
            if self._generator_log is not None:
                self._generator_log.close()
                self._generator_log = None
            self._provisioner.unload_module(self.device_path)

    def __enter__(self) -> VirtualDevice:
        return self

    def __exit__(self, exc_type, exc_value, tb) -> bool:
        try:
            self.release()
        except LoopbackError as exc:
            logger.error("Teardown of %s failed: %s", self.device_path, exc)
        return False

    def __repr__(self) -> str:
        pid = self.generator.pid if self.generator is not None else None
        return f"<VirtualDevice path={self.device_path}, state={self._state.value}, generator_pid={pid}>"


class LoopbackProvisioner:
    """Creates and destroys VirtualDevice instances.

    Process, filesystem and clock access are injectable so the lifecycle can be
    exercised without root privileges or a real kernel module.
    """

    def __init__(
        self,
        defaults: Optional[BenchmarkDefaults] = None,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        which: Callable[[str], Optional[str]] = shutil.which,
        path_exists: Callable[[str], bool] = os.path.lexists,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.defaults = defaults or get_defaults()
        self._run = run
        self._popen = popen
        self._which = which
        self._path_exists = path_exists
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def device_path(index: int) -> str:
        return f"/dev/video{index}"

    # =========================================================================
    # Prerequisites
    # =========================================================================

    def check_prerequisites(self, device_path: str = "") -> None:
        """Raise PrerequisiteMissingError unless ffmpeg and the module are installed."""
        binary = self.defaults.generator_binary
        if self._which(binary) is None:
            raise PrerequisiteMissingError(
                device_path, binary, "install with 'sudo apt install ffmpeg'"
            )
        module = self.defaults.module_name
        try:
            result = self._run(["modinfo", module], capture_output=True, text=True)
            installed = result.returncode == 0
        except FileNotFoundError:
            installed = False
        if not installed:
            raise PrerequisiteMissingError(
                device_path,
                f"{module} kernel module",
                "install with 'sudo apt install v4l2loopback-dkms'",
            )

    def is_available(self) -> bool:
        try:
            self.check_prerequisites()
        except PrerequisiteMissingError:
            return False
        return True

    # =========================================================================
    # Provisioning
    # =========================================================================

    def provision(
        self,
        index: int,
        width: int,
        height: int,
        fps: int,
        pattern: str = "testsrc",
    ) -> VirtualDevice:
        """Load the module, wait for the node, start the generator.

        On any failure after the module is loaded, everything acquired so far
        is torn down before the error propagates.
        """
        device_path = self.device_path(index)

        if self._path_exists(device_path):
            raise DeviceAlreadyExistsError(device_path)
        self.check_prerequisites(device_path)
        source = build_source_filter(pattern, width, height, fps)

        handle = VirtualDevice(device_path, index, self)
        self.load_module(index, device_path)

        generator: Optional[subprocess.Popen] = None
        generator_log: Optional[IO[bytes]] = None
        try:
            self._wait_for_device(device_path)
            generator_log = tempfile.TemporaryFile()
            generator = self._start_generator(source, device_path, generator_log)
            self._warm_up(generator, generator_log, device_path)
        except BaseException:
            self._rollback(device_path, generator, generator_log)
            raise

        handle.attach(generator, generator_log)
        logger.info("Loopback device ready at %s (%s)", device_path, source)
        return handle

    def load_module(self, index: int, device_path: str) -> None:
        cmd = [
            "modprobe",
            self.defaults.module_name,
            f"video_nr={index}",
            f"card_label={self.defaults.card_label}",
            "exclusive_caps=1",
        ]
        logger.debug("Loading module: %s", " ".join(cmd))
        try:
            result = self._run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except OSError as exc:
            raise ModuleLoadError(device_path, -1, str(exc)) from exc
        if result.returncode != 0:
            raise ModuleLoadError(device_path, result.returncode, result.stdout or "")

    def unload_module(self, device_path: str) -> None:
        cmd = ["modprobe", "-r", self.defaults.module_name]
        logger.debug("Unloading module: %s", " ".join(cmd))
        try:
            result = self._run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except OSError as exc:
            raise ModuleUnloadError(device_path, -1, str(exc)) from exc
        if result.returncode != 0:
            raise ModuleUnloadError(device_path, result.returncode, result.stdout or "")

    def stop_generator(self, generator: subprocess.Popen) -> None:
        """Kill the generator and reap it. Errors are logged, never raised."""
        try:
            generator.kill()
        except OSError as exc:
            logger.warning("Could not kill generator pid %s: %s", generator.pid, exc)
        try:
            generator.wait(timeout=self.defaults.generator_stop_timeout_seconds)
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("Generator pid %s did not exit cleanly: %s", generator.pid, exc)

    def _wait_for_device(self, device_path: str) -> None:
        start = self._clock()
        deadline = start + self.defaults.device_settle_timeout_seconds
        while not self._path_exists(device_path):
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise DeviceNotCreatedError(device_path, self._clock() - start)
            self._sleep(min(self.defaults.readiness_poll_interval_seconds, remaining))

    def _generator_command(self, source: str, device_path: str) -> List[str]:
        return [
            self.defaults.generator_binary,
            "-hide_banner",
            "-loglevel", "error",
            "-nostats",
            "-re",
            "-f", "lavfi",
            "-i", source,
            "-pix_fmt", self.defaults.generator_pix_fmt,
            "-f", "v4l2",
            device_path,
        ]

    def _start_generator(self, source: str, device_path: str, log: IO[bytes]) -> subprocess.Popen:
        cmd = self._generator_command(source, device_path)
        logger.debug("Starting generator: %s", " ".join(cmd))
        try:
            return self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=log,
            )
        except OSError as exc:
            raise GeneratorStartError(device_path, str(exc), original_error=exc) from exc

    def _warm_up(self, generator: subprocess.Popen, log: IO[bytes], device_path: str) -> None:
        """Give the generator time to start producing; fail if it exits meanwhile."""
        deadline = self._clock() + self.defaults.generator_warmup_seconds
        while True:
            returncode = generator.poll()
            if returncode is not None:
                raise GeneratorStartError(
                    device_path,
                    f"exited with status {returncode} during warm-up",
                    output=_read_log(log),
                )
            remaining = deadline - self._clock()
            if remaining <= 0:
                return
            self._sleep(min(self.defaults.readiness_poll_interval_seconds, remaining))

    def _rollback(
        self,
        device_path: str,
        generator: Optional[subprocess.Popen],
        generator_log: Optional[IO[bytes]],
    ) -> None:
        logger.warning("Provisioning %s failed, rolling back", device_path)
        if generator is not None:
            self.stop_generator(generator)
        if generator_log is not None:
            generator_log.close()
        try:
            self.unload_module(device_path)
        except ModuleUnloadError as exc:
            logger.error("Rollback could not unload module: %s", exc)


def _read_log(log: IO[bytes]) -> str:
    log.flush()
    log.seek(0)
    return log.read().decode("utf-8", errors="replace")
