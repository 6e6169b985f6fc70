"""Session logs: fields gathered across a unit of work and written together."""

from __future__ import annotations

import threading
from contextvars import ContextVar
from typing import Iterable, Optional

from .encoder import Field
from .logger import get_logger

_session: ContextVar[Optional["SessionLog"]] = ContextVar("yylog_session", default=None)


class SessionLog:
    """Ordered fields keyed by name; a repeated key replaces the value in place."""

    def __init__(self, fields: Iterable[Field] = ()):
        self._lock = threading.Lock()
        self._fields: list[Field] = []
        self._index: dict[str, int] = {}
        self.append(fields)

    @property
    def fields(self) -> tuple[Field, ...]:
        """The gathered fields, in first-seen order."""
        with self._lock:
            return tuple(self._fields)

    def append(self, fields: Iterable[Field]) -> None:
        """Add fields, replacing any with a key already present."""
        with self._lock:
            for item in fields:
                position = self._index.get(item.key)
                if position is None:
                    self._index[item.key] = len(self._fields)
                    self._fields.append(item)
                else:
                    self._fields[position] = item

    def flush(self, fields: Iterable[Field] = ()) -> list[Field]:
        """Return the gathered fields merged with fields, leaving the session unchanged."""
        with self._lock:
            merged = list(self._fields)
            for item in fields:
                position = self._index.get(item.key)
                if position is None:
                    merged.append(item)
                else:
                    merged[position] = item
        return merged


def log_start(*args: Field) -> SessionLog:
    """Start a session in the current context, or add fields to the one already there."""
    session = _session.get()
    if session is None:
        session = SessionLog(args)
        _session.set(session)
    elif args:
        session.append(args)
    return session


def log_append(*args: Field) -> None:
    """Add fields to the current context's session, if there is one."""
    session = _session.get()
    if session is not None and args:
        session.append(args)


def log_flush(key: str, *args: Field) -> None:
    """Write the session's fields, merged with args, as one info entry with message key."""
    session = _session.get()
    logs = session.flush(args) if session is not None else list(args)
    get_logger().write_log("info", key, *logs)