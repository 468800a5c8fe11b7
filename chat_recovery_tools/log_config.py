"""Logging configuration for chat recovery tools.

Uses loguru. The package disables its own logger on import, so library users
see nothing until ``configure_logging`` (called once per process by the CLI)
re-enables it and installs sinks.

Environment variables for log level control:
- CHAT_RECOVERY_LOG_LEVEL: Global log level (default: WARNING)
- CHAT_RECOVERY_LOG_FILE: Optional log file path (rotated at 5 MB)

Copyright (c) 2026 Andrew Hundt
Licensed under the Apache License, Version 2.0
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import Optional, Union

from loguru import logger

DEFAULT_LOG_LEVEL = "WARNING"
PACKAGE = "chat_recovery_tools"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}"


def configure_logging(level: Optional[str] = None, log_file: Union[str, Path, None] = None) -> str:
    """Replace loguru's sinks with a stderr sink and an optional file sink.

    Args:
        level: Log level name; falls back to ``CHAT_RECOVERY_LOG_LEVEL`` then WARNING
        log_file: Optional log file path; falls back to ``CHAT_RECOVERY_LOG_FILE``

    Returns:
        The effective level name.

    Raises:
        ValueError: If the level name is unknown to loguru.
    """
    effective = (level or os.getenv("CHAT_RECOVERY_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    logger.level(effective)  # raises ValueError for unknown names

    logger.remove()
    logger.enable(PACKAGE)
    logger.configure(extra={"name": PACKAGE})
    logger.add(
        sys.stderr,
        level=effective,
        format=_CONSOLE_FORMAT,
        colorize=None,
    )

    target = log_file or os.getenv("CHAT_RECOVERY_LOG_FILE")
    if target:
        path = Path(target).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level="DEBUG",
            format=_FILE_FORMAT,
            rotation="5 MB",
            retention=3,
        )
    return effective


def get_logger(name: str):
    """Get a logger with the given name bound to context.

    Args:
        name: Module or component name

    Returns:
        Logger instance with name bound
    """
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Context manager for timing operations with automatic logging.

    Yields:
        dict with 'elapsed_ms' key (populated after context exits)

    Example:
        with log_timing("strategy chain", log) as timing:
            outcome = chain.run(text)
        # timing['elapsed_ms'] now contains the elapsed time
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["DEFAULT_LOG_LEVEL", "configure_logging", "get_logger", "log_timing", "logger"]
