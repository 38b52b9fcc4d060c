"""Logging setup for the cleanup engine.

CLEANUP_LOG_FORMAT=json switches the root handler to one JSON object per
line; the default "text" format stays human-readable.  Rule-scope fields
(tenant, store, vendor, …) travel as ``extra`` so they land as top-level
JSON keys instead of being baked into the message.

The engine never installs handlers on its own.  Embedding applications call
:func:`configure_logging` once at startup, which applies
``settings.log_format`` and ``settings.log_level``.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional

from cleanup.config import CleanupSettings, get_settings

SCOPE_FIELDS = (
    "tenant_id", "store_id", "vendor_id", "template_id", "doc_type",
    "version", "shield_count", "error_type",
)

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def _exception_payload(exc_info) -> dict[str, str]:
    exc_type, exc, tb = exc_info
    return {
        "type": exc_type.__name__ if exc_type else "Exception",
        "message": str(exc) if exc else "",
        "stacktrace": "".join(traceback.format_exception(exc_type, exc, tb)),
    }


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Keys: ``timestamp`` (RFC-3339, UTC), ``severity``, ``logger``,
    ``message``, any non-None :data:`SCOPE_FIELDS`, and ``exception`` when
    the record carries a traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key in SCOPE_FIELDS
            if (value := getattr(record, key, None)) is not None
        )
        if record.exc_info and record.exc_info[2]:
            payload["exception"] = _exception_payload(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class ScopedLogger(logging.LoggerAdapter):
    """Logger adapter that stamps a fixed rule scope onto every record.

    Per-call ``extra`` values win over the bound ones.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def scoped(logger: logging.Logger, **scope: Any) -> ScopedLogger:
    """Bind *scope* (``tenant_id=…``, ``store_id=…``) to *logger*."""
    return ScopedLogger(logger, {k: v for k, v in scope.items() if v is not None})


def setup_logging(log_format: str = "text", level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_format: "json" for JSON lines, anything else for plain text.
        level: Level name (DEBUG, INFO, WARNING, ERROR).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JSONFormatter() if log_format.lower() == "json" else logging.Formatter(_TEXT_FORMAT)
    )
    root.addHandler(handler)

    # SQL echo is far too chatty at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def configure_logging(cfg: Optional[CleanupSettings] = None) -> None:
    """Apply the configured log format and level (``CLEANUP_LOG_*``)."""
    cfg = cfg or get_settings()
    setup_logging(cfg.log_format, cfg.log_level)
