"""Custom exception hierarchy for capture benchmark execution.

Provides specific exception types for different failure modes, so callers can
tell pre-flight configuration mistakes from provisioning failures and from
failures local to one scenario.
"""

from __future__ import annotations

from typing import Any, Optional


class BenchmarkError(Exception):
    """Base exception for all benchmark-related errors."""
    pass


class ConfigurationError(BenchmarkError):
    """Raised when benchmark configuration is invalid.

    Attributes:
        config_key: Configuration key that is invalid
        config_value: Invalid value
        reason: Reason for invalidity
    """

    def __init__(
        self,
        message: str,
        config_key: str,
        config_value: Any,
        reason: str,
    ):
        super().__init__(message)
        self.config_key = config_key
        self.config_value = config_value
        self.reason = reason


class UnknownFormatError(ConfigurationError):
    """Raised when a pixel format name has no entry in the format table."""

    def __init__(self, format_name: str):
        super().__init__(
            f"Unknown pixel format: {format_name}",
            config_key="pixel_format",
            config_value=format_name,
            reason="not one of the supported pixel formats",
        )
        self.format_name = format_name


class ScenarioNotFoundError(BenchmarkError):
    """Raised when a scenario name is not in the scenario table."""

    def __init__(self, scenario_name: str):
        super().__init__(
            f"Unknown scenario: {scenario_name} (use --list to see available scenarios)"
        )
        self.scenario_name = scenario_name


# =============================================================================
# Loopback provisioning
# =============================================================================

class LoopbackError(BenchmarkError):
    """Base class for virtual device provisioning failures.

    Attributes:
        device_path: Device node the failure relates to
    """

    def __init__(self, message: str, device_path: str):
        super().__init__(message)
        self.device_path = device_path


class DeviceAlreadyExistsError(LoopbackError):
    """Raised when the target device node is already present."""

    def __init__(self, device_path: str):
        super().__init__(
            f"device {device_path} already exists, unload v4l2loopback first",
            device_path,
        )


class PrerequisiteMissingError(LoopbackError):
    """Raised when the generator binary or the kernel module is not installed.

    Attributes:
        tool: Name of the missing tool
        hint: Installation hint
    """

    def __init__(self, device_path: str, tool: str, hint: str):
        super().__init__(f"{tool} not found: {hint}", device_path)
        self.tool = tool
        self.hint = hint


class ModuleLoadError(LoopbackError):
    """Raised when the module loader exits non-zero.

    Attributes:
        returncode: Exit status of the loader
        output: Combined stdout/stderr of the loader
    """

    def __init__(self, device_path: str, returncode: int, output: str):
        super().__init__(
            f"failed to load v4l2loopback (exit {returncode}): {output.strip()}",
            device_path,
        )
        self.returncode = returncode
        self.output = output


class ModuleUnloadError(LoopbackError):
    """Raised when the module cannot be unloaded during release."""

    def __init__(self, device_path: str, returncode: int, output: str):
        super().__init__(
            f"failed to unload v4l2loopback (exit {returncode}): {output.strip()}",
            device_path,
        )
        self.returncode = returncode
        self.output = output


class DeviceNotCreatedError(LoopbackError):
    """Raised when the device node does not appear after loading the module.

    Attributes:
        waited_seconds: How long the provisioner polled for the node
    """

    def __init__(self, device_path: str, waited_seconds: float):
        super().__init__(
            f"device {device_path} not created after loading module (waited {waited_seconds:.2f}s)",
            device_path,
        )
        self.waited_seconds = waited_seconds


class GeneratorStartError(LoopbackError):
    """Raised when the frame generator fails to start or dies during warm-up.

    Attributes:
        output: Diagnostic output captured from the generator, if any
        original_error: Exception raised while spawning, if any
    """

    def __init__(
        self,
        device_path: str,
        reason: str,
        output: str = "",
        original_error: Optional[Exception] = None,
    ):
        message = f"failed to start ffmpeg for {device_path}: {reason}"
        if output.strip():
            message = f"{message}: {output.strip()}"
        super().__init__(message, device_path)
        self.reason = reason
        self.output = output
        self.original_error = original_error


# =============================================================================
# Scenario execution
# =============================================================================

class BenchmarkExecutionError(BenchmarkError):
    """Raised when a scenario cannot run to completion.

    Attributes:
        device_path: Device the scenario targeted
        stage: Stage where failure occurred ('open', 'format', 'start')
        original_error: The original exception that caused the failure
    """

    def __init__(
        self,
        message: str,
        device_path: str,
        stage: str,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.device_path = device_path
        self.stage = stage
        self.original_error = original_error


class DeviceOpenError(BenchmarkExecutionError):
    """Raised when the capture device cannot be opened or configured."""


class SessionStartError(BenchmarkExecutionError):
    """Raised when the capture session fails to start streaming."""


class ProfilingError(BenchmarkError):
    """Raised when profiling fails.

    Attributes:
        profiler: Name of profiler that failed ('cpu', 'trace', 'memory')
        reason: Reason for failure
    """

    def __init__(
        self,
        message: str,
        profiler: str,
        reason: str,
    ):
        super().__init__(message)
        self.profiler = profiler
        self.reason = reason


class ArtifactWriteError(BenchmarkError):
    """Raised when a result artifact cannot be written.

    Attributes:
        path: Artifact path
        original_error: Underlying OSError
    """

    def __init__(self, path: str, original_error: Exception):
        super().__init__(f"Failed to write {path}: {original_error}")
        self.path = path
        self.original_error = original_error
