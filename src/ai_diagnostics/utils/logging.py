"""Logging setup for the ``ai-diagnostics`` command line tool."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import TextIO

__all__ = ["setup_logging", "LOG_FILE_NAME"]

LOG_FILE_NAME = "ai_diagnostics.log"
LOG_DIR_ENV = "AI_DIAGNOSTICS_LOG_DIR"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_NOISY_LOGGERS = ("asyncio", "httpx", "httpcore")


def setup_logging(
    level: int = logging.WARNING,
    *,
    log_dir: Path | str | None = None,
    stream: TextIO | None = None,
    force: bool = False,
) -> Path:
    """Send records to ``ai_diagnostics.log`` and to ``stream`` (stderr).

    Stdout is left alone so ``--json`` output stays parseable. A second call
    keeps the existing handlers unless ``force`` is set.
    """

    root = logging.getLogger()
    current = _installed_file_handler(root)
    if current is not None and not force:
        return Path(current.baseFilename)

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or Path.home() / ".ai_diagnostics" / "logs")
    directory = directory.expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    console_handler = logging.StreamHandler(stream or sys.stderr)
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        handler.setLevel(level)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)
    # Third-party request logging only shows at WARNING, even under --debug.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_path


def _installed_file_handler(root: logging.Logger) -> logging.handlers.RotatingFileHandler | None:
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler) and handler.baseFilename.endswith(LOG_FILE_NAME):
            return handler
    return None
