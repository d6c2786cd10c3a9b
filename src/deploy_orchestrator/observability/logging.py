"""
Structured logging for the deployment orchestrator.

Log records carry the service name, the deployment being worked on and the
current OpenTelemetry trace context, and can be emitted as JSON.
"""

import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import TYPE_CHECKING

from opentelemetry import trace

if TYPE_CHECKING:
    from ..config import OrchestratorSettings

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(deployment_id)s] - "
    "[%(name)s] - %(message)s"
)

TRACE_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(deployment_id)s] - "
    "[%(trace_id)s:%(span_id)s] - [%(name)s] - %(message)s"
)

DEFAULT_LOG_LEVEL = "INFO"

_EMPTY_TRACE_ID = "0" * 32
_EMPTY_SPAN_ID = "0" * 16

_current_deployment: ContextVar[str | None] = ContextVar("current_deployment", default=None)

# LogRecord attributes that are not copied into JSON output as extras.
_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
    "asctime",
    "service_name",
    "deployment_id",
    "trace_id",
    "span_id",
}


@contextmanager
def deployment_context(deployment_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``deployment_id``."""
    token = _current_deployment.set(deployment_id)
    try:
        yield
    finally:
        _current_deployment.reset(token)


def current_deployment_id() -> str | None:
    return _current_deployment.get()


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class DeploymentContextFilter(logging.Filter):
    """Filter to inject the current deployment id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.deployment_id = _current_deployment.get() or "-"  # type: ignore[attr-defined]
        return True


class TraceContextFilter(logging.Filter):
    """Filter to inject trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        span = trace.get_current_span()
        span_context = span.get_span_context() if span else None
        if span_context is not None and span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(span_context.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = _EMPTY_TRACE_ID  # type: ignore[attr-defined]
            record.span_id = _EMPTY_SPAN_ID  # type: ignore[attr-defined]
        return True


class DeploymentJSONFormatter(logging.Formatter):
    """JSON formatter for structured deployment logs."""

    def __init__(self, include_trace: bool = True):
        super().__init__()
        self.include_trace = include_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "deployment_id": getattr(record, "deployment_id", None),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_trace:
            trace_id = getattr(record, "trace_id", None)
            if trace_id and trace_id != _EMPTY_TRACE_ID:
                log_entry["trace_id"] = trace_id
                log_entry["span_id"] = getattr(record, "span_id", None)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_deployment_logging(
    service_name: str = "deploy-orchestrator",
    log_level: str = DEFAULT_LOG_LEVEL,
    enable_json: bool = False,
    enable_trace: bool = True,
    logger_name: str = "deploy_orchestrator",
) -> logging.Logger:
    """Attach a configured handler to the package logger.

    ``LOG_LEVEL``, ``LOG_FORMAT`` (``json`` or ``text``) and
    ``ENABLE_TRACE_LOGGING`` environment variables override the arguments.
    """
    log_level = os.getenv("LOG_LEVEL", log_level).upper()
    enable_json = os.getenv("LOG_FORMAT", "json" if enable_json else "text") == "json"
    enable_trace = os.getenv("ENABLE_TRACE_LOGGING", str(enable_trace)).lower() == "true"

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_deploy_orchestrator", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler._deploy_orchestrator = True  # type: ignore[attr-defined]
    handler.addFilter(ServiceNameFilter(service_name))
    handler.addFilter(DeploymentContextFilter())
    if enable_trace:
        handler.addFilter(TraceContextFilter())

    if enable_json:
        handler.setFormatter(DeploymentJSONFormatter(include_trace=enable_trace))
    else:
        handler.setFormatter(logging.Formatter(TRACE_LOG_FORMAT if enable_trace else DEFAULT_LOG_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def setup_logging_from_settings(
    settings: "OrchestratorSettings", logger_name: str = "deploy_orchestrator"
) -> logging.Logger:
    """Configure package logging from :class:`OrchestratorSettings`."""
    return setup_deployment_logging(
        service_name=settings.service_name,
        log_level=settings.log_level,
        enable_json=settings.json_logging,
        enable_trace=settings.tracing_enabled,
        logger_name=logger_name,
    )
