"""Centralized logging configuration for reviewtree."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# Loggers that DEBUG_HIERARCHY turns up regardless of the root level.
HIERARCHY_LOGGERS = ("reviewtree.cache", "reviewtree.grouping")


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter; carries the publish generation when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        generation = getattr(record, "generation", None)
        if generation is not None:
            payload["generation"] = generation
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_format: bool = False,
    debug_hierarchy: bool = False,
) -> None:
    """Configure root logging with console + rotating file handler."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name in HIERARCHY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug_hierarchy else logging.NOTSET)

    # Avoid duplicate handlers on reloads
    if root.handlers:
        return

    handler_level = logging.DEBUG if debug_hierarchy else numeric_level
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    formatter: logging.Formatter = JsonFormatter() if json_format else logging.Formatter(fmt, datefmt="%H:%M:%S")

    console = logging.StreamHandler()
    console.setLevel(handler_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(handler_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
