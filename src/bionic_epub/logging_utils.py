from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

QUIET_ACCESS_PATHS = ("/health",)


def _access_target(record: logging.LogRecord) -> str | None:
    args = record.args
    if isinstance(args, tuple) and len(args) == 5 and isinstance(args[2], str):
        return args[2]
    return None


def _readable_target(target: str) -> str:
    # Only the path is decoded; the query string stays as sent.
    path, sep, query = target.partition("?")
    return unquote(path, encoding="utf-8", errors="replace") + sep + query


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Show percent-encoded request paths as text, e.g. non-ASCII book names."""

    def formatMessage(self, record):  # type: ignore[override]
        target = _access_target(record)
        if target is None:
            return super().formatMessage(record)
        readable = copy(record)
        readable.args = record.args[:2] + (_readable_target(target),) + record.args[3:]
        return super().formatMessage(readable)


class QuietHealthFilter(logging.Filter):
    """Drop access-log lines for health probes."""

    def filter(self, record: logging.LogRecord) -> bool:
        target = _access_target(record)
        if target is None:
            return True
        return target.partition("?")[0] not in QUIET_ACCESS_PATHS


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "bionic_epub.logging_utils.Utf8AccessFormatter"
    config.setdefault("filters", {})["quiet_health"] = {
        "()": "bionic_epub.logging_utils.QuietHealthFilter"
    }
    access_handler = config.get("handlers", {}).get("access")
    if isinstance(access_handler, dict):
        access_handler.setdefault("filters", []).append("quiet_health")
    if debug:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            logger = config.get("loggers", {}).get(name)
            if isinstance(logger, dict):
                logger["level"] = "DEBUG"
    return config


__all__ = ["QuietHealthFilter", "Utf8AccessFormatter", "build_uvicorn_log_config"]
