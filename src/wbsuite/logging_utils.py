from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from rich.console import Console
from rich.logging import RichHandler
from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter

PACKAGE_LOGGER = "wbsuite"
BOOK_ROUTE_PREFIX = "/api/books/"


def set_debug_logging(enabled: bool) -> None:
    """Route wbsuite's own log records to stderr, at DEBUG when ``enabled``."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    if not logger.handlers:
        handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
        handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if enabled else logging.WARNING)


def readable_book_path(path: str) -> str:
    """
    Decode the book name in ``/api/books/<book>/...`` request paths.

    Everything else, including the query string, stays percent-encoded.
    """
    route, sep, query = path.partition("?")
    if not route.startswith(BOOK_ROUTE_PREFIX):
        return path
    book, slash, rest = route[len(BOOK_ROUTE_PREFIX):].partition("/")
    book = unquote(book, encoding="utf-8", errors="replace")
    return f"{BOOK_ROUTE_PREFIX}{book}{slash}{rest}{sep}{query}"


class BookNameAccessFormatter(AccessFormatter):
    """Access log formatter that shows book names as typed, not percent-encoded."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        args = record.args
        if isinstance(args, tuple) and len(args) == 5 and isinstance(args[2], str):
            record = copy(record)
            record.args = (*args[:2], readable_book_path(args[2]), *args[3:])
        return super().formatMessage(record)


def build_uvicorn_log_config() -> dict[str, Any]:
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = f"{__name__}.BookNameAccessFormatter"
    loggers = config.setdefault("loggers", {})
    loggers[PACKAGE_LOGGER] = {"handlers": ["default"], "level": "INFO", "propagate": False}
    return config


__all__ = [
    "BOOK_ROUTE_PREFIX",
    "BookNameAccessFormatter",
    "PACKAGE_LOGGER",
    "build_uvicorn_log_config",
    "readable_book_path",
    "set_debug_logging",
]
