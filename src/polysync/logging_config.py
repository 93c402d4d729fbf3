"""structlog configuration for polysync.

Logs go to stderr by default. When POLYSYNC_DEBUG is set the level drops
to DEBUG, and if a data directory is given the output is also appended to
``<data_dir>/debug.log``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

import structlog

ENV_DEBUG = "POLYSYNC_DEBUG"

_configured = False
_log_file: TextIO | None = None


def is_debug_enabled() -> bool:
    val = os.environ.get(ENV_DEBUG, "").lower()
    return val in ("true", "1", "yes", "on")


class _TeeFile:
    """Minimal file-like object writing to several streams."""

    def __init__(self, *streams: TextIO) -> None:
        self._streams = streams

    def write(self, data: str) -> int:
        for stream in self._streams:
            stream.write(data)
        return len(data)

    def flush(self) -> None:
        for stream in self._streams:
            stream.flush()


def configure_logging(
    data_dir: Path | None = None,
    debug: bool | None = None,
    force: bool = False,
) -> None:
    """Configure structlog processors and output.

    Args:
        data_dir: Directory for debug.log (only used in debug mode)
        debug: Override the POLYSYNC_DEBUG env var
        force: Reconfigure even if already configured
    """
    global _configured, _log_file
    if _configured and not force:
        return

    if _log_file is not None:
        _log_file.close()
        _log_file = None

    if debug is None:
        debug = is_debug_enabled()

    level = logging.DEBUG if debug else logging.INFO

    out: Any = sys.stderr
    if debug and data_dir is not None:
        data_dir.mkdir(parents=True, exist_ok=True)
        _log_file = open(data_dir / "debug.log", "a")  # noqa: SIM115
        out = _TeeFile(sys.stderr, _log_file)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str) -> Any:
    """Get a named structlog logger."""
    return structlog.get_logger(name)
