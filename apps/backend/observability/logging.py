"""
Logging for the backend and the client library.

Records carry the active correlation id (one per HTTP request or SSV
callback) and go out as JSON in production, plain text elsewhere. Client
analytics use `log_event`, so a rejected ad request and a credited callback
land in the same stream:

    log_event(logger, "ad_request_rejected", user_id="u-1", reason="cooldown")
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from pythonjsonlogger import jsonlogger

import config

SERVICE_NAME = "rewarded-ads-backend"
REDACTED = "[REDACTED]"

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_id_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id (a fresh `req-...` one if none is given) inside the block."""
    token = _correlation_id.set(correlation_id or f"req-{uuid.uuid4().hex[:16]}")
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


class CorrelationIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "none"
        return True


class SensitiveDataFilter(logging.Filter):
    """Masks callback signatures, reward tokens and credentials in extras and dict args."""

    SENSITIVE_KEYS = frozenset({
        "password", "secret", "api_key", "authorization", "x-internal-api-key",
        "signature", "token", "reward_token", "private_key",
    })

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = self.redact(record.args)
        for key, value in list(vars(record).items()):
            if key.lower() in self.SENSITIVE_KEYS:
                setattr(record, key, REDACTED)
            elif isinstance(value, (dict, list)):
                setattr(record, key, self.redact(value))
        return True

    @classmethod
    def redact(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: REDACTED if str(k).lower() in cls.SENSITIVE_KEYS else cls.redact(v) for k, v in data.items()}
        if isinstance(data, (list, tuple)):
            return [cls.redact(item) for item in data]
        return data


class RewardsJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            level=record.levelname,
            logger=record.name,
            correlation_id=getattr(record, "correlation_id", "none"),
            environment=config.ENVIRONMENT,
            service=SERVICE_NAME,
        )


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return RewardsJsonFormatter("%(asctime)s %(message)s", rename_fields={"asctime": "@timestamp"})
    return logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# Libraries that log every query or request at INFO
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "aiosqlite")


def setup_logging(level: str = config.LOG_LEVEL, log_format: str = config.LOG_FORMAT) -> logging.Handler:
    """Replace the root handlers with one stream handler; returns it."""
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter(log_format))
    handler.addFilter(CorrelationIDFilter())
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit a named analytics event as an INFO record with structured fields."""
    logger.info(event, extra={"event": event, **fields})


setup_logging()
