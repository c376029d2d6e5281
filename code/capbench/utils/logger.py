"""Structured logging infrastructure with Rich console and JSON file handlers.

Provides readable TTY output for interactive runs and JSON logging for machine parsing.
Scenario runs get a private logger whose output lands in that scenario's capture.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import IO, Optional, Union

from rich.console import Console
from rich.logging import RichHandler


# Global console instance
_console: Optional[Console] = None

SCENARIO_LOGGER_PREFIX = "capbench.scenario"
SCENARIO_LOG_FORMAT = "%(asctime)s %(message)s"


def get_console() -> Console:
    """Get global Rich console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def is_tty() -> bool:
    """Check if stdout is a TTY (interactive terminal)."""
    return sys.stdout.isatty()


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    log_format: str = "text",  # "text" or "json"
    use_rich: Optional[bool] = None
) -> None:
    """Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        log_format: Format for file logging ("text" or "json")
        use_rich: Whether to use Rich for console output (auto-detects TTY if None)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if use_rich is None:
        use_rich = is_tty()

    # Clear existing handlers
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    console_handler: Union[RichHandler, logging.Handler]
    if use_rich:
        console_handler = RichHandler(
            console=get_console(),
            show_time=False,
            show_level=False,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def attach_scenario_logger(scenario_name: str, stream: IO[str], verbose: bool = False) -> logging.Logger:
    """Return a non-propagating logger that writes only to ``stream``.

    Each scenario gets its own logger name, so lines logged while one scenario
    runs never reach another scenario's capture or the orchestrator console.
    """
    scenario_logger = logging.getLogger(f"{SCENARIO_LOGGER_PREFIX}.{scenario_name}")
    detach_scenario_logger(scenario_logger)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(SCENARIO_LOG_FORMAT, datefmt='%Y/%m/%d %H:%M:%S'))
    scenario_logger.addHandler(handler)
    scenario_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    scenario_logger.propagate = False
    return scenario_logger


def detach_scenario_logger(scenario_logger: logging.Logger) -> None:
    """Remove and close every handler attached by attach_scenario_logger()."""
    for handler in list(scenario_logger.handlers):
        scenario_logger.removeHandler(handler)
        handler.close()


def log_benchmark_start(logger: logging.Logger, benchmark_name: str, index: Optional[int] = None, total: Optional[int] = None) -> None:
    """Log scenario start with its position in the run."""
    context = f"[{index}/{total}] " if index is not None and total is not None else ""
    logger.info(f"{context}Running: {benchmark_name}")


def log_benchmark_complete(logger: logging.Logger, benchmark_name: str, avg_fps: float) -> None:
    """Log scenario completion with its headline number."""
    logger.info(f"Completed: {benchmark_name} - {avg_fps:.2f} fps")


def log_benchmark_error(logger: logging.Logger, benchmark_name: str, error: str) -> None:
    """Log scenario error."""
    logger.error(f"Failed: {benchmark_name} - {error}")


def log_profiling_start(logger: logging.Logger, profiler: str, target: str) -> None:
    """Log profiling start.

    Args:
        logger: Logger instance
        profiler: Profiler name ('cpu', 'trace', 'memory')
        target: Artifact path the profiler writes to
    """
    logger.debug(f"Starting {profiler} profiling: {target}")


def log_profiling_complete(logger: logging.Logger, profiler: str, artifact_path: Optional[str] = None) -> None:
    """Log profiling completion."""
    if artifact_path:
        logger.info(f"{profiler} profile written: {artifact_path}")
    else:
        logger.info(f"{profiler} profiling complete")
