"""Structured JSON logging and solver context tagging."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from nodalflow.config import settings

solver_var: ContextVar[str] = ContextVar("solver", default="")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with solver name injection."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        solver = solver_var.get("")
        if solver:
            log_entry["solver"] = solver

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Include extra fields
        for key in ("iteration", "stop_active", "stop_reactive", "bus", "branch"):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry)


@contextmanager
def solver_context(name: str) -> Iterator[None]:
    """Tag every record logged inside the block with the solver name."""
    token = solver_var.set(name)
    try:
        yield
    finally:
        solver_var.reset(token)


def setup_logging(json_format: bool | None = None, level: str | int | None = None) -> None:
    """Configure the ``nodalflow`` logger. Use json_format=True for log shipping.

    Arguments left as None fall back to ``settings.log_json`` and
    ``settings.log_level``.
    """
    json_format = settings.log_json if json_format is None else json_format
    level = settings.log_level if level is None else level

    logger = logging.getLogger("nodalflow")
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()
    logger.addHandler(handler)
