"""Logging setup shared by the skillc CLI, pipeline workers and service."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

_ROOT = "skillc"
_CONSOLE_FORMAT = "[skillc] %(levelname)s %(message)s"
_WORKER_FORMAT = "[skillc] %(levelname)s [%(worker)s] %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


class _WorkerFilter(logging.Filter):
    """Tag records emitted from pipeline threads with the artifact they build."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.threadName or threading.current_thread().name
        record.worker = name[len(_ROOT) + 1 :] if name.startswith(f"{_ROOT}-") else "main"
        return True


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``skillc.<name>``, or the package logger when no name is given."""
    return logging.getLogger(f"{_ROOT}.{name}" if name else _ROOT)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Install console (and optional file) handlers on the package logger.

    Verbose mode drops to DEBUG and prefixes each console line with the
    artifact id of the worker thread that logged it, so interleaved output
    from a parallel batch stays readable.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    if verbose:
        console.addFilter(_WorkerFilter())
        console.setFormatter(logging.Formatter(_WORKER_FORMAT))
    else:
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        sink = logging.FileHandler(log_file, encoding="utf-8")
        sink.setLevel(logging.DEBUG)
        sink.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(sink)
        # the file always receives debug detail, even without --verbose
        logger.setLevel(logging.DEBUG)

    return logger


__all__ = ["configure_logging", "get_logger"]
