"""Process logging and the in-memory event journal.

Log lines are key=value formatted so they stay greppable in `kubectl logs`:

    ts=2024-05-01T10:00:00Z level=INFO logger=itp.reconciler msg="updated annotation" ingress=web/site key=... value=...
"""
from __future__ import annotations

import logging
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any

LOG_FORMAT = 'ts=%(asctime)s level=%(levelname)s logger=%(name)s msg="%(message)s"%(context)s'
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(LOG_DATE_FORMAT)


def format_context(context: dict[str, Any]) -> str:
    parts = []
    for k, v in context.items():
        if v is None:
            continue
        s = str(v)
        if not s or any(c in s for c in ' "='):
            s = '"' + s.replace('"', '\\"') + '"'
        parts.append(f"{k}={s}")
    return (" " + " ".join(parts)) if parts else ""


class ContextFormatter(logging.Formatter):
    """Renders the `context` dict passed via `extra=` as trailing key=value pairs."""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        ctx = getattr(record, "context", None)
        record.context = format_context(ctx) if isinstance(ctx, dict) else ""
        try:
            return super().format(record)
        finally:
            record.context = ctx


def configure_logging(level: str = "INFO") -> None:
    """Install the key=value handler on the root logger.

    `itp` loggers log at `level`; third-party libraries (kubernetes, urllib3,
    uvicorn) share the handler at WARNING.
    """
    root = logging.getLogger()
    if not any(isinstance(h.formatter, ContextFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ContextFormatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(logging.WARNING)
    itp = logging.getLogger("itp")
    itp.setLevel(getattr(logging, level.upper(), logging.INFO))
    itp.propagate = True


@dataclass(frozen=True)
class Event:
    level: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=utc_now)


class EventLog:
    """Bounded, thread-safe journal of recent operational events."""

    def __init__(self, maxlen: int = 200) -> None:
        self._lock = Lock()
        self._events: deque[Event] = deque(maxlen=maxlen)

    def append(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 50) -> list[Event]:
        """Newest first."""
        with self._lock:
            items = list(self._events)
        return list(reversed(items))[: max(0, limit)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "WARNING": logging.WARNING, "ERROR": logging.ERROR}


def log_event(
    logger: logging.Logger,
    level: str,
    message: str,
    journal: EventLog | None = None,
    exc: BaseException | None = None,
    **context: Any,
) -> None:
    """Log `message` with key=value context, and record it in `journal` unless DEBUG."""
    level = level.upper()
    if exc is not None:
        context["error"] = f"{type(exc).__name__}: {exc}"
    logger.log(_LEVELS.get(level, logging.INFO), message, extra={"context": context})
    if journal is not None and level != "DEBUG":
        journal.append(Event(level=level, message=message, context={k: v for k, v in context.items() if v is not None}))
