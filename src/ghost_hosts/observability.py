"""Structured logging for ghost-hosts.

Purpose
    Every log line names an event (``entry_added``, ``refresh_tick_failed``,
    ``backup_rotated``) and carries a ``context`` mapping with the entry id,
    the path or URL involved, and the trace id of the apply run that caused
    it. Handlers stay the embedding application's business; the package only
    installs a ``NullHandler``.

Contents
    - ``TRACE_ID`` / ``bind_trace_id``: per-run correlation id.
    - ``log_debug`` / ``log_info`` / ``log_warning`` / ``log_error``.
    - ``make_event``: ``entry_id`` + ``path`` payload used by most call sites.
    - ``enable_console_logging``: stderr handler behind ``--verbose``.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Final, Mapping

TRACE_ID: ContextVar[str | None] = ContextVar("ghost_hosts_trace_id", default=None)
"""Id of the apply run in progress (``apply-<hex>``), ``None`` outside one."""

_LOGGER: Final[logging.Logger] = logging.getLogger("ghost_hosts")
_LOGGER.addHandler(logging.NullHandler())

_CONSOLE_FORMAT: Final[str] = "%(asctime)s %(levelname)-7s %(message)s %(context)s"


def get_logger() -> logging.Logger:
    """Return the ``ghost_hosts`` logger."""

    return _LOGGER


def bind_trace_id(trace_id: str | None) -> None:
    """Bind *trace_id* to the current context; ``None`` clears it.

    Examples
    --------
    >>> bind_trace_id('apply-1')
    >>> TRACE_ID.get()
    'apply-1'
    >>> bind_trace_id(None)
    >>> TRACE_ID.get() is None
    True
    """

    TRACE_ID.set(trace_id)


def log_debug(message: str, **fields: Any) -> None:
    _emit(logging.DEBUG, message, fields)


def log_info(message: str, **fields: Any) -> None:
    _emit(logging.INFO, message, fields)


def log_warning(message: str, **fields: Any) -> None:
    _emit(logging.WARNING, message, fields)


def log_error(message: str, **fields: Any) -> None:
    _emit(logging.ERROR, message, fields)


def make_event(
    entry_id: str | None,
    path: str | None,
    payload: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Return ``{"entry_id": ..., "path": ...}`` extended with *payload*.

    *path* is a filesystem path for store and hosts-file events and a URL for
    refresh events.

    Examples
    --------
    >>> make_event('abc', None, {'changed': True})
    {'entry_id': 'abc', 'path': None, 'changed': True}
    """

    event: dict[str, Any] = {"entry_id": entry_id, "path": path}
    if payload:
        event.update(payload)
    return event


def enable_console_logging(level: int = logging.INFO) -> logging.Handler:
    """Attach a stderr handler printing each event with its context; return it for removal."""

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    handler.addFilter(_ensure_context)
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(level)
    return handler


def _emit(level: int, message: str, fields: Mapping[str, Any]) -> None:
    context = {"trace_id": TRACE_ID.get(), **fields}
    _LOGGER.log(level, message, extra={"context": context})


def _ensure_context(record: logging.LogRecord) -> bool:
    # Records from other loggers have no ``context`` attribute.
    if not hasattr(record, "context"):
        record.context = {}
    return True
