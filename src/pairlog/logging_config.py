"""
Logging configuration for Pairlog.

Sets up console and rotating file handlers for the API server and CLI
contexts. Console output is split so INFO/DEBUG go to stdout and
WARNING and above go to stderr.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from pairlog.config import settings

STANDARD_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured_context: Optional[str] = None


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _MaxLevelFilter(logging.Filter):
    """Only pass records strictly below a level (keeps stdout free of warnings)."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def _build_formatter() -> logging.Formatter:
    if settings.log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(context: str = "api", force: bool = False) -> None:
    """
    Configure root logging for a given process context.

    Args:
        context: Process context, used to name the log file ('api', 'cli')
        force: Reconfigure even if logging was already set up

    Raises:
        PermissionError: If file logging is enabled and the log directory
            cannot be created
    """
    global _configured_context
    if _configured_context is not None and not force:
        return

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    formatter = _build_formatter()

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    if settings.log_console_enabled:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(max(level, logging.WARNING))
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    if settings.log_file_enabled:
        log_dir = settings.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # SQLAlchemy engine logging is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured_context = context
    logging.getLogger(__name__).debug(
        "Logging configured for context=%s level=%s format=%s",
        context,
        settings.log_level,
        settings.log_format,
    )
