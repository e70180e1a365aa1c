# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Leveled Logging for the Kernel Runner

The runner's modules log through standard module loggers under the
``kernel_runner`` namespace. This module only configures them:

- A TRACE level below DEBUG, for per-buffer and per-argument chatter
- A minimum level, settable by name (or via KERNEL_RUNNER_LOG_LEVEL)
- A flush threshold: records below it are buffered by the stream,
  records at or above it flush immediately

Example:
    from kernel_runner.log import configure_logging

    configure_logging(level="debug", flush_threshold="warning")
"""

import logging
import os
import sys
from typing import Optional, TextIO

from .errors import ConfigurationError

TRACE = 5
OFF = logging.CRITICAL + 10

logging.addLevelName(TRACE, "TRACE")

LOG_LEVEL_ENV_VAR = "KERNEL_RUNNER_LOG_LEVEL"

_LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "err": logging.ERROR,
    "critical": logging.CRITICAL,
    "off": OFF,
}

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"

logger = logging.getLogger("kernel_runner")


def parse_level(name: str) -> int:
    """
    Convert a level name to a logging level number.

    Args:
        name: One of trace, debug, info, warning, error, critical, off.

    Returns:
        The numeric logging level.

    Raises:
        ConfigurationError: If the name is not a known level.
    """
    level = _LEVEL_NAMES.get(name.strip().lower())
    if level is None:
        raise ConfigurationError(
            f"Unknown log level '{name}'",
            option="log-level",
            value=name,
            suggestions=[f"Use one of: {', '.join(_LEVEL_NAMES)}"],
        )
    return level


def default_level_name() -> str:
    """Default minimum level, honoring the environment."""
    return os.environ.get(LOG_LEVEL_ENV_VAR, "warning")


class ThresholdFlushHandler(logging.StreamHandler):
    """
    Stream handler which only flushes for sufficiently severe records.

    Less severe records stay in the stream's buffer until a severe
    record (or process exit) flushes them.
    """

    def __init__(self, stream: Optional[TextIO] = None, flush_level: int = logging.INFO):
        super().__init__(stream)
        self.flush_level = flush_level

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            self.stream.write(msg + self.terminator)
            if record.levelno >= self.flush_level:
                self.flush()
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)


def configure_logging(
    level: str = "warning",
    flush_threshold: str = "info",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the ``kernel_runner`` logger.

    Replaces any handler installed by an earlier call, so this may be
    invoked again once the command line has been parsed.

    Args:
        level: Minimum level name of records to emit.
        flush_threshold: Level name at and above which output is flushed.
        stream: Output stream (default: stderr).

    Returns:
        The configured package logger.
    """
    numeric_level = parse_level(level)
    flush_level = parse_level(flush_threshold)

    for handler in list(logger.handlers):
        if isinstance(handler, ThresholdFlushHandler):
            logger.removeHandler(handler)

    handler = ThresholdFlushHandler(stream or sys.stderr, flush_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False

    logger.debug(f"Log level set to {level}; flushing at {flush_threshold} and above")
    return logger


def log_build_log(build_log: str, failed: bool, log: Optional[logging.Logger] = None) -> None:
    """
    Report a kernel compilation log.

    The log is shown at ERROR level when the build failed and at DEBUG
    level otherwise; a blank log is not shown after a successful build.
    """
    log = log or logger
    text = build_log.rstrip("\0")
    if not failed and not text.strip():
        return
    level = logging.ERROR if failed else logging.DEBUG
    if not text:
        log.log(level, "Kernel compilation log is empty.")
        return
    log.log(level, f"Kernel compilation log:\n-----\n{text}\n-----")
