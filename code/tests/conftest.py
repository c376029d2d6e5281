"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import Callable, List, Sequence

import pytest

from capture_fakes import FakeCaptureDevice, FakeSystem
from capbench.benchmark.config import BenchmarkConfig


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def fake_device_factory() -> Callable[..., Callable[[str, BenchmarkConfig], FakeCaptureDevice]]:
    """Build a device opener; the opened devices are collected on ``opener.opened``."""

    def factory(payloads: Sequence[bytes] = (), **kwargs):
        opened: List[FakeCaptureDevice] = []

        def opener(path: str, config: BenchmarkConfig, log=None) -> FakeCaptureDevice:
            device = FakeCaptureDevice(path, config, payloads, log=log, **kwargs)
            opened.append(device)
            return device

        opener.opened = opened
        return opener

    return factory
