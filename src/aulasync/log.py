"""Logging configuration for aulasync.

Provides:
- File-based logging to data/logs/aulasync.log
- Stream logging to stdout, which Lambda forwards to CloudWatch
- A buffering handler that collects errors as JSON lines so the Lambda
  handlers can report how many errors a run produced.

Usage:
    from aulasync.log import get_logger, read_and_clear_error_buffer

    logger = get_logger(__name__)
    logger.info("Saved items", extra={"context": {"table": "Posts", "count": 3}})

    # Call at the end of a handler to collect buffered errors
    errors = read_and_clear_error_buffer()
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from aulasync.utils import data_dir

LOG_DIR = data_dir("logs")
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOG_DIR / "aulasync.log"
ERROR_BUFFER_FILE = LOG_DIR / "error_buffer.json"


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        formatter = _ContextFormatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # File handler: all levels
        fh = logging.FileHandler(LOG_FILE)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(logging.INFO)
        sh.setFormatter(formatter)
        logger.addHandler(sh)

        # Buffer handler: errors only, as JSON lines
        bh = _BufferingFileHandler(ERROR_BUFFER_FILE)
        bh.setLevel(logging.ERROR)
        bh.setFormatter(formatter)
        logger.addHandler(bh)

    return logger


class _ContextFormatter(logging.Formatter):
    """Appends the ``context`` extra, if any, as a JSON object."""

    def format(self, record):
        message = super().format(record)
        context = getattr(record, "context", None)
        if context:
            message = f"{message} | {json.dumps(context, default=str, sort_keys=True)}"
        return message


class _BufferingFileHandler(logging.Handler):
    """Appends ERROR+ records to a JSON-lines file."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = path

    def emit(self, record):
        try:
            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            }
            with open(self.path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except Exception:
            self.handleError(record)


def read_and_clear_error_buffer() -> list[dict]:
    """Read all buffered errors and clear the file."""
    if not ERROR_BUFFER_FILE.exists():
        return []

    entries = []
    with open(ERROR_BUFFER_FILE, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    entries.append({"message": line})

    ERROR_BUFFER_FILE.unlink(missing_ok=True)
    return entries
