"""Centralized logging utilities for the issue tracker backend.

The module provides a JSON formatter, structured context propagation backed by a
context variable, and small helpers for timing query phases. Nothing is configured
on import; the API and the sandbox CLI call :func:`setup_logging` explicitly.
"""
from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import sys
import time
from typing import Any, Dict, Iterable, Iterator, Mapping, MutableMapping, Optional

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "logging_context",
    "timed",
]

_LOG_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "tracker_log_context", default={}
)


def _copy_context(data: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(data)


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:     # noqa: D401
        base: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        context = _copy_context(_LOG_CONTEXT.get())
        context.update(getattr(record, "context", {}))
        if context:
            base["context"] = context
        if record.stack_info:
            base["stack"] = self.formatStack(record.stack_info)
        return json.dumps(base, ensure_ascii=False, default=str)


class ContextualAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges the bound context into every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        context = _copy_context(_LOG_CONTEXT.get())
        extra = dict(kwargs.get("extra") or {})
        context.update(extra.pop("context", {}))
        extra.setdefault("context", context)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(*, level: Optional[str] = None, use_json: bool = True) -> None:
    """Configure root logging for the application.

    :param level:
            Optional log level name. Defaults to ``LOG_LEVEL`` from the environment or ``INFO``.
    :param use_json:
            Install :class:`JsonFormatter` when ``True`` (default); a plain text
            formatter is easier to read while debugging locally.
    """

    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    formatter: logging.Formatter
    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def get_logger(name: str | None = None) -> ContextualAdapter:
    """Return a context-aware logger for the given name."""

    return ContextualAdapter(logging.getLogger(name), {})


def bind_context(**kwargs: Any) -> contextvars.Token[Dict[str, Any]]:
    """Bind key-value pairs to the current logging context.

    ``None`` values are dropped so optional identifiers do not clutter records.
    """

    current = _copy_context(_LOG_CONTEXT.get())
    current.update({k: v for k, v in kwargs.items() if v is not None})
    return _LOG_CONTEXT.set(current)


def clear_context(token: contextvars.Token[Dict[str, Any]]) -> None:
    _LOG_CONTEXT.reset(token)


@contextlib.contextmanager
def logging_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily bind logging metadata."""

    token = bind_context(**kwargs)
    try:
        yield
    finally:
        clear_context(token)


@contextlib.contextmanager
def timed(logger: logging.LoggerAdapter, message: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Log ``message`` at debug level with the elapsed milliseconds once the block exits.

    The yielded dict can be filled by the block with extra values (row counts and
    the like) that end up in the record context.
    """

    details: Dict[str, Any] = dict(context)
    started = time.perf_counter()
    try:
        yield details
    finally:
        details["elapsed_ms"] = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(message, extra={"context": details})


def iter_context() -> Iterable[tuple[str, Any]]:
    """Expose the current context for diagnostics/testing purposes."""

    return _copy_context(_LOG_CONTEXT.get()).items()
