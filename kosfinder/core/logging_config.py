"""KosFinder logging configuration.

Call ``configure_logging()`` once at process startup.  Modules log through
their own module-level logger::

    import logging
    logger = logging.getLogger(__name__)

Registry mutations tag their records with ``extra={"event": ...}`` (see
:mod:`kosfinder.core.events`).  Every record also carries the id of the
request it was emitted under, taken from :data:`REQUEST_ID_CTX`; wrap a unit
of work in :func:`request_context` to assign one.

Environment variables (read at call time when no explicit value is given):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_logging",
    "request_context",
    "JsonFormatter",
    "REQUEST_ID_CTX",
    "RequestContextFilter",
]

#: Id of the request being served, or ``"-"`` outside any request.
#: Coroutines and tasks started inside a request inherit it.
REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="-")

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_VALID_FORMATS = ("text", "json")

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

#: Third-party loggers held at WARNING unless DEBUG is requested.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite")


# ---------------------------------------------------------------------------
# Request correlation
# ---------------------------------------------------------------------------


@contextmanager
def request_context(request_id: str | None = None) -> Iterator[str]:
    """Bind *request_id* (or a fresh 8-char hex id) for the enclosed block.

    The previous value is restored on exit, even if the block raises.

    Example::

        with request_context() as rid:
            await registry.delete_listing(kos_id, caller)
    """
    rid = request_id or uuid.uuid4().hex[:8]
    token = REQUEST_ID_CTX.set(rid)
    try:
        yield rid
    finally:
        REQUEST_ID_CTX.reset(token)


class RequestContextFilter(logging.Filter):
    """Copy :data:`REQUEST_ID_CTX` onto each record as ``record.request_id``.

    Installed on the handler by :func:`configure_logging`; never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = REQUEST_ID_CTX.get()
        return True


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def _resolve(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    resolved = value or os.environ.get(env_var) or default
    resolved = resolved.upper() if env_var == "LOG_LEVEL" else resolved.lower()
    if resolved not in allowed:
        raise ValueError(f"Unknown {env_var} {resolved!r}. Must be one of: {', '.join(allowed)}")
    return resolved


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Level name; falls back to ``$LOG_LEVEL``, then ``"INFO"``.
        fmt: ``"text"`` or ``"json"``; falls back to ``$LOG_FORMAT``, then
            ``"text"``.
        force: Replace existing root handlers.  Without it an already
            configured root logger only has its level adjusted.

    Raises:
        ValueError: If *level* or *fmt* is not recognised.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", _VALID_LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", _VALID_FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(RequestContextFilter())
    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.handlers.clear()
    root.addHandler(handler)

    noisy_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Shape::

        {
            "ts":         "2026-10-19T12:34:56.789Z",
            "level":      "INFO",
            "logger":     "kosfinder.registry.listings",
            "message":    "Created kos 12 (slug=kos-melati ...)",
            "request_id": "a3f2b1c0",
            "event":      "LISTING_CREATED",
            "extra":      {"kos_id": 12}
        }

    ``request_id`` and ``event`` are always present (``"-"`` and ``null``
    when unset).  Any other ``extra=`` keys land under ``"extra"``.
    ``exc_info`` is added when the record carries an exception.
    """

    #: Standard :class:`logging.LogRecord` attributes, never echoed as extras.
    _RECORD_ATTRS: frozenset[str] = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None))
    ) | {"message", "asctime", "request_id", "event"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", REQUEST_ID_CTX.get()),
            "event": getattr(record, "event", None),
            "extra": {
                key: value
                for key, value in vars(record).items()
                if key not in self._RECORD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)
