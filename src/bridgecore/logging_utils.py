"""JSON log lines for a bridge session.

Every line carries the bound session, order and currency pair. API credentials
and the loaded order's token are masked wherever they appear in the line.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

from bridgecore.config import Settings
from bridgecore.logging_context import bound_secrets, get_logging_context
from bridgecore.security.redaction import mask_secret, sanitize_mapping, sanitize_text

HANDLER_NAME = "bridgecore-json"

_RESERVED_KEYS = frozenset({"timestamp", "level", "logger", "message"})
_LIBRARY_LOGGERS = (("httpx", "HTTPX_LOG_LEVEL"), ("httpcore", "HTTPCORE_LOG_LEVEL"))


class JsonFormatter(logging.Formatter):
    def __init__(self, *, known_secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._known_secrets = tuple(secret for secret in known_secrets if secret)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
            **get_logging_context(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, Mapping):
            for key, value in extras.items():
                payload[f"extra_{key}" if key in _RESERVED_KEYS else key] = value

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["error_message"] = sanitize_text(str(exc_value) if exc_value is not None else "")
            payload["traceback"] = sanitize_text(self.formatException(record.exc_info))
        elif record.exc_text:
            payload["traceback"] = sanitize_text(record.exc_text)

        rendered = json.dumps(sanitize_mapping(payload), default=str)
        for secret in (*self._known_secrets, *bound_secrets()):
            rendered = rendered.replace(secret, mask_secret(secret))
        return rendered


def _level(value: str | int | None, default: int) -> int:
    if isinstance(value, int):
        return value
    if value is None or not value.strip():
        return default
    resolved = logging.getLevelName(value.strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(
    settings: Settings | None = None,
    *,
    level: str | int | None = None,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install the JSON handler on the root logger, replacing a previous one.

    The level comes from ``level``, then ``settings.log_level``, then
    ``LOG_LEVEL``. httpx and httpcore follow DEBUG and stay at WARNING
    otherwise, unless ``HTTPX_LOG_LEVEL``/``HTTPCORE_LOG_LEVEL`` say otherwise.
    """
    if level is None:
        level = settings.log_level if settings is not None else os.getenv("LOG_LEVEL")
    resolved = _level(level, logging.INFO)
    known_secrets = settings.api_credentials() if settings is not None else ()

    handler = logging.StreamHandler(stream)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(JsonFormatter(known_secrets=[s for s in known_secrets if s]))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved)

    library_default = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name, env_name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(_level(os.getenv(env_name), library_default))
    return handler
