"""Process-wide logging setup for Nestmate.

``configure_logging()`` is called once by the entry-point; library modules
only ever do::

    import logging
    logger = logging.getLogger(__name__)

and attach an event name where a state transition happens::

    logger.info("Boost attached", extra={"event": events.BOOST_ATTACHED})

Two output formats are supported:

* ``text``: ``2026-01-01 09:00:00 INFO     [a3f2b1c0] nestmate.lifecycle.manager: ...``
* ``json``: one object per line with ``event`` and ``request_id`` lifted to
  the top level, so a log aggregator can group by operation.

Environment fallbacks (read at call time): ``LOG_LEVEL`` (default ``INFO``)
and ``LOG_FORMAT`` (default ``text``).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Final

__all__ = ["configure_logging", "JsonFormatter", "REQUEST_ID_CTX", "RequestContextFilter"]

logger = logging.getLogger(__name__)

#: Id of the facade operation being served.  Set by
#: :class:`~nestmate.service.marketplace.Marketplace` around each call and
#: inherited by tasks spawned inside it.  ``"-"`` outside an operation.
REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="-")

_LEVELS: Final = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_FORMATS: Final = ("text", "json")

_TEXT_LAYOUT: Final = "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s"
_TEXT_DATEFMT: Final = "%Y-%m-%d %H:%M:%S"

#: Loggers that are too chatty below WARNING unless DEBUG was asked for.
_QUIET_LOGGERS: Final = ("aiosqlite", "asyncio")


class RequestContextFilter(logging.Filter):
    """Stamp ``record.request_id`` from :data:`REQUEST_ID_CTX`.  Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = REQUEST_ID_CTX.get()
        return True


def _pick(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    chosen = value or os.environ.get(env_var, default)
    normalised = chosen.upper() if allowed[0].isupper() else chosen.lower()
    if normalised not in allowed:
        raise ValueError(f"Unknown {env_var} {chosen!r}. Must be one of: {', '.join(allowed)}")
    return normalised


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install one stderr handler on the root logger.

    Args:
        level: ``DEBUG`` … ``CRITICAL``; falls back to ``$LOG_LEVEL``.
        fmt: ``text`` or ``json``; falls back to ``$LOG_FORMAT``.
        force: Replace existing root handlers.  Without it an already
            configured root logger (pytest's, for instance) only has its
            level adjusted.

    Raises:
        ValueError: On an unknown level or format.
    """
    resolved_level = _pick(level, "LOG_LEVEL", "INFO", _LEVELS)
    resolved_fmt = _pick(fmt, "LOG_FORMAT", "text", _FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(
        JsonFormatter() if resolved_fmt == "json" else logging.Formatter(_TEXT_LAYOUT, _TEXT_DATEFMT)
    )
    root.handlers[:] = [handler]

    quiet_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Shape::

        {"ts": "2026-01-01T09:00:00.123Z", "level": "INFO",
         "logger": "nestmate.lifecycle.manager", "message": "...",
         "event": "BOOST_ATTACHED", "request_id": "a3f2b1c0",
         "extra": {...}}

    ``event`` is ``null`` for records logged without one.  Any other
    ``extra=`` keys land under ``"extra"``; ``"exc_info"`` is added when the
    record carries an exception.
    """

    #: Attributes every LogRecord has; anything else came from ``extra=``.
    _STANDARD: Final = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "asctime", "request_id", "event"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event": getattr(record, "event", None),
            "request_id": getattr(record, "request_id", REQUEST_ID_CTX.get()),
            "extra": {k: v for k, v in record.__dict__.items() if k not in self._STANDARD},
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)
