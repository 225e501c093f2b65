"""
Logging for the copilot service.

``get_logger`` hands out module loggers writing to stdout; ``trace_logger``
wraps one so every line emitted while serving a request carries its
trace id.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

from src.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


class TraceAdapter(logging.LoggerAdapter):
    """Prefix messages with ``[trace=<id>]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[trace={self.extra['trace_id']}] {msg}", kwargs


def trace_logger(logger: logging.Logger, trace_id: str) -> TraceAdapter:
    return TraceAdapter(logger, {"trace_id": trace_id})
