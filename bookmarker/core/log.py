# bookmarker/core/log.py
from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any, Mapping

ROOT_LOGGER = "bookmarker"

# credential keys, camelCase as stored or snake_case as on the models
SECRET_FIELDS = frozenset({
    "appSecret", "app_secret",
    "tenantAccessToken", "tenant_access_token",
    "authorization", "Authorization",
})
REDACTED = "********"
_BEARER = re.compile(r"(Bearer\s+)\S+")


def redact(value: Any) -> Any:
    """Masks credentials in a log field, recursing into dicts and lists."""
    if isinstance(value, Mapping):
        return {k: (REDACTED if k in SECRET_FIELDS and v else redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        return _BEARER.sub(r"\1" + REDACTED, value)
    return value


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # ExtraAdapter puts the caller's fields under record.extra
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            for k, v in record.extra.items():
                if k not in payload:
                    payload[k] = v

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_json_logger(level: str = "INFO") -> logging.Logger:
    """
    Set up the base 'bookmarker' logger with a JSON formatter on stdout.
    Idempotent: previous handlers are dropped before the new one is attached.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    logger.handlers.clear()
    logger.addHandler(handler)

    logger.propagate = False
    return logger


class ExtraAdapter(logging.LoggerAdapter):
    """
    Lets callers write:
        log.info("event_name", extra={"key": "value"})
    and have the mapping show up in JsonFormatter as record.extra, with
    credentials masked.
    """
    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        user_extra: Mapping[str, Any] | None = kwargs.pop("extra", None)
        merged = dict(self.extra or {})
        if user_extra:
            merged.update(user_extra)
        kwargs["extra"] = {"extra": redact(merged)}
        return msg, kwargs


def get_logger(name: str = ROOT_LOGGER) -> ExtraAdapter:
    """
    Returns an adapter over a child of 'bookmarker':
        log = get_logger("bookmarker.queue")
        log.warning("queue_item_retry", extra={"id": item.id, "retry_count": 2})
    """
    base = logging.getLogger(ROOT_LOGGER)
    if not base.handlers:
        setup_json_logger()

    logger = base if name == ROOT_LOGGER else logging.getLogger(name)
    logger.propagate = True
    return ExtraAdapter(logger, {})
