"""
Structured logging for the item master Lambda.

Inside Lambda every line is a JSON object carrying the invocation trace ID and,
while a publish batch is in flight, the batch ID. Locally a plain text format
is used instead.
"""

import functools
import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

SERVICE_NAME = "item-master-lambda"

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")
_batch_id: ContextVar[str] = ContextVar("batch_id", default="")

# record attributes copied verbatim into the JSON line when a caller passes them in `extra`
PASSTHROUGH_FIELDS = ("sku", "event_type", "request_source", "duration_ms", "metrics")

QUIET_LOGGERS = ("boto3", "botocore", "urllib3", "sqlalchemy.engine")


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Use the given trace ID for the current context, or mint a new one."""
    value = trace_id or str(uuid.uuid4())
    _trace_id.set(value)
    return value


def get_trace_id() -> str:
    return _trace_id.get()


def get_batch_id() -> str:
    return _batch_id.get()


class StructuredJsonFormatter(logging.Formatter):
    """Renders records as single-line JSON for CloudWatch Logs Insights."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "trace_id": get_trace_id(),
            "batch_id": get_batch_id(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for name in PASSTHROUGH_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)

        data = getattr(record, "extra_data", None)
        if isinstance(data, dict):
            entry["data"] = data
        error = getattr(record, "error", None)
        if isinstance(error, dict):
            entry["error"] = error

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {"type": exc_type.__name__, "message": str(exc_value)}

        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", service_name: str = SERVICE_NAME) -> logging.Logger:
    """
    Install a single stdout handler on the root logger.

    Safe to call more than once: earlier handlers are replaced, so a cold start
    can reconfigure the level once settings are loaded.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        formatter: logging.Formatter = StructuredJsonFormatter(service_name)
    else:
        formatter = logging.Formatter("[%(levelname)s] %(asctime)s - %(name)s - %(message)s")

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(log_level)
    stream.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stream)
    root.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)


class LogContext:
    """
    Scope a trace ID and/or publish batch ID to a block.

    Example:
        with LogContext(batch_id="batch-3"):
            logger.info("Sending batch")
    """

    def __init__(self, trace_id: Optional[str] = None, batch_id: Optional[str] = None):
        self._values = [(var, value) for var, value in ((_trace_id, trace_id), (_batch_id, batch_id)) if value is not None]
        self._tokens: list = []

    def __enter__(self):
        self._tokens = [(var, var.set(value)) for var, value in self._values]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
        return False


def log_execution_time(logger: logging.Logger):
    """Log how long the wrapped call took, at INFO on success and ERROR on failure."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()

            def elapsed_ms() -> float:
                return round((time.perf_counter() - started) * 1000, 2)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = elapsed_ms()
                logger.error(
                    f"{func.__qualname__} failed after {duration}ms: {e}",
                    extra={"duration_ms": duration},
                    exc_info=True,
                )
                raise
            logger.info(f"{func.__qualname__} completed", extra={"duration_ms": elapsed_ms()})
            return result

        return wrapper

    return decorator
