from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, TextIO

from loguru import logger
from opentelemetry import trace

# Attributes every stdlib LogRecord carries; anything else came from ``extra=``.
_STANDARD_RECORD_KEYS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}

_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "celery.redirected", "kombu")


class InterceptHandler(logging.Handler):
    """Forward stdlib records (Celery, SQLAlchemy, httpx) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            text = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings
            text = str(record.msg)

        context = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_RECORD_KEYS}
        target = logger.bind(logger_name=record.name, **context)
        target.opt(depth=6, exception=record.exc_info).log(level, text)


class JsonLogSink:
    """Loguru sink writing one JSON document per line.

    Output goes to stderr by default so CLI commands keep stdout for results.
    """

    def __init__(self, metadata: Dict[str, str], stream: TextIO | None = None) -> None:
        self._metadata = metadata
        self._stream = stream

    def __call__(self, message: "logger.Message") -> None:
        stream = self._stream or sys.stderr
        stream.write(json.dumps(self.build_payload(message.record), default=str) + "\n")
        stream.flush()

    def build_payload(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["extra"].get("logger_name") or record["name"],
            **self._metadata,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = format(span_context.trace_id, "032x")
            payload["span_id"] = format(span_context.span_id, "016x")

        payload.update({key: value for key, value in record["extra"].items() if key != "logger_name"})

        exception = record["exception"]
        if exception is not None and exception.type is not None:
            payload["exception"] = {"type": exception.type.__name__, "message": str(exception.value)}
        return payload


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str | int = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Route Loguru and stdlib logging through a structured JSON sink."""

    logger.remove()
    metadata = {"service": service_name, "environment": environment, "version": version}
    logger.add(JsonLogSink(metadata, stream), level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "JsonLogSink", "configure_logging"]
