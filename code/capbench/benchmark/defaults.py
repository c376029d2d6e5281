"""Centralized default values for benchmark configuration.

This module provides a single source of truth for all default values used by
the provisioner, the executor and the CLI.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Optional

from capbench.benchmark.exceptions import ConfigurationError

ENV_PREFIX = "CAPBENCH_"


@dataclass
class BenchmarkDefaults:
    """Centralized default values for benchmark configuration.

    All defaults can be overridden by passing values directly to the
    components, via CLI flags (e.g., --duration, --buffers, --loopback-num),
    or via CAPBENCH_<FIELD> environment variables read at import time.
    """

    # Capture defaults
    duration: str = "10s"
    width: int = 640
    height: int = 480
    fps: int = 30
    pixel_format: str = "MJPEG"
    buffer_count: int = 4

    # Loopback defaults
    loopback_num: int = 50
    test_pattern: str = "testsrc"
    card_label: str = "capbench"
    generator_binary: str = "ffmpeg"
    module_name: str = "v4l2loopback"
    generator_pix_fmt: str = "yuyv422"

    # Readiness bounds (in seconds)
    device_settle_timeout_seconds: float = 5.0
    generator_warmup_seconds: float = 1.0
    readiness_poll_interval_seconds: float = 0.05
    generator_stop_timeout_seconds: float = 5.0

    # Capture loop
    frame_queue_depth: int = 8
    frame_poll_interval_seconds: float = 0.1
    verbose_progress_every: int = 100

    # Statistics
    percentiles: tuple = (50.0, 95.0, 99.0)

    # Execution trace
    trace_max_events: int = 1_000_000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> BenchmarkDefaults:
        """Create BenchmarkDefaults with CAPBENCH_<FIELD> overrides applied.

        ``CAPBENCH_FRAME_QUEUE_DEPTH=16`` overrides ``frame_queue_depth``.
        Values are converted to the type of the field's default; tuples are
        comma-separated. Variables that name no field are ignored.

        Raises:
            ConfigurationError: if an override cannot be converted
        """
        environ = os.environ if environ is None else environ
        defaults = cls()
        overrides = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            overrides[field.name] = _convert(field.name, raw, getattr(defaults, field.name))
        return cls(**overrides)

    def to_dict(self) -> dict:
        """Convert defaults to dictionary."""
        return asdict(self)


def _convert(name: str, raw: str, default: Any) -> Any:
    try:
        if isinstance(default, tuple):
            return tuple(float(part) for part in raw.split(",") if part.strip())
        if isinstance(default, bool):
            return bool(int(raw))
        return type(default)(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}",
            config_key=name,
            config_value=raw,
            reason=f"expected {type(default).__name__}",
        ) from None


def _load_defaults() -> BenchmarkDefaults:
    try:
        return BenchmarkDefaults.from_env()
    except ConfigurationError as exc:
        warnings.warn(f"{exc}; ignoring CAPBENCH_* overrides.")
        return BenchmarkDefaults()


# Global instance - can be overridden for testing or custom configurations
_defaults = _load_defaults()


def get_defaults() -> BenchmarkDefaults:
    """Get the global BenchmarkDefaults instance."""
    return _defaults


def set_defaults(defaults: BenchmarkDefaults) -> None:
    """Set the global BenchmarkDefaults instance (useful for testing)."""
    global _defaults
    _defaults = defaults
