"""Global pytest configuration.

We explicitly disable auto-loading of external pytest plugins to prevent
environment-provided plugins from interfering with test discovery and capture
in this repository's harness.
"""

import logging
import os
import signal
import sys
from pathlib import Path

import pytest

# Guard against site-wide plugins that can change stdout handling (causing
# Illegal seek/OSError on teardown in CI and local shells).
os.environ.setdefault("PYTEST_DISABLE_PLUGIN_AUTOLOAD", "1")
os.environ.setdefault("PYTHONWARNINGS", "default")

REPO_ROOT = Path(__file__).resolve().parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from capbench.benchmark.defaults import get_defaults, set_defaults  # noqa: E402
from capbench.profiling import session as profiling_session  # noqa: E402


# -----------------------------------------------------------------------------
# Simple built-in timeout support (pytest-timeout is disabled by plugin block)
# -----------------------------------------------------------------------------
def _parse_timeout(config) -> float:
    try:
        return float(config.getini("timeout"))
    except (TypeError, ValueError):
        return 0.0


def pytest_configure(config):
    # Accept the ini option even when pytest-timeout isn't loaded.
    config._global_timeout = _parse_timeout(config)
    config.addinivalue_line(
        "markers", "loopback: needs root, ffmpeg and the v4l2loopback module"
    )


def pytest_addoption(parser):
    parser.addini("timeout", "Global timeout (seconds)", default="0")


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    timeout = getattr(item.config, "_global_timeout", 0)
    if not timeout or timeout <= 0 or not hasattr(signal, "SIGALRM"):
        yield
        return

    def _handler(signum, frame):
        raise TimeoutError(f"Test exceeded global timeout of {timeout} seconds")

    previous = signal.signal(signal.SIGALRM, _handler)
    signal.alarm(int(timeout))
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)


@pytest.fixture(autouse=True)
def _restore_global_state():
    """Tests may swap the global defaults, reconfigure the root logger or
    leak a profiling session; put everything back afterwards."""
    saved = get_defaults()
    root_handlers = list(logging.root.handlers)
    root_level = logging.root.level
    yield
    set_defaults(saved)
    for handler in list(logging.root.handlers):
        if handler not in root_handlers and not type(handler).__module__.startswith("_pytest"):
            logging.root.removeHandler(handler)
            handler.close()
    logging.root.setLevel(root_level)
    leaked = profiling_session.active_session()
    if leaked is not None:
        leaked.close()
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("capbench.scenario."):
            scenario_logger = logging.getLogger(name)
            for handler in list(scenario_logger.handlers):
                scenario_logger.removeHandler(handler)
