"""
Structured logging for the sync service.

Correlation and batch IDs live in context variables so that every record
emitted while a batch runs (including records from worker threads started
with a copied context) carries them without threading loggers through calls.
"""

import functools
import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Optional

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
batch_id_var: ContextVar[str] = ContextVar("batch_id", default="")

# Attributes copied from a LogRecord into the JSON document when present.
_ITEM_FIELDS = ("product_id", "platform", "destination", "stage", "duration_ms", "metrics")

_TRUTHY = {"1", "true", "yes", "on"}


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set the correlation ID for the current context, generating one if empty."""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_batch_id(batch_id: str) -> None:
    batch_id_var.set(batch_id)


def get_batch_id() -> str:
    return batch_id_var.get()


def _context_fields() -> dict:
    return {"correlation_id": get_correlation_id(), "batch_id": get_batch_id()}


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the service and current IDs."""

    def __init__(self, service_name: str = "catalog-sync"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        document = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "function": record.funcName,
            "line": record.lineno,
            **_context_fields(),
        }
        document.update(
            {name: getattr(record, name) for name in _ITEM_FIELDS if hasattr(record, name)}
        )

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            document["data"] = extra_data

        if record.exc_info and record.exc_info[0] is not None:
            document["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(document, default=str)


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps records with the correlation and batch IDs,
    plus whatever fields the adapter was bound with.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {}), **_context_fields()}
        return msg, kwargs

    def with_item(self, product_id: str, platform: Optional[str] = None) -> "ItemLogger":
        """Return a logger bound to one item moving through the pipeline."""
        return ItemLogger(self.logger, {"product_id": product_id, "platform": platform})


class ItemLogger(ContextualLogger):
    pass


def get_logger(name: str) -> ContextualLogger:
    return ContextualLogger(logging.getLogger(name), {})


def configure_logging(
    level: str = "INFO",
    service_name: str = "catalog-sync",
    json_logs: Optional[bool] = None,
) -> ContextualLogger:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        service_name: Service name written into JSON records
        json_logs: Force JSON output on or off; defaults to the
            CATALOG_SYNC_JSON_LOGS environment variable

    Returns:
        Contextual logger wrapping the root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_logs is None:
        json_logs = os.environ.get("CATALOG_SYNC_JSON_LOGS", "").strip().lower() in _TRUTHY

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        StructuredJsonFormatter(service_name)
        if json_logs
        else logging.Formatter("[%(levelname)s] %(asctime)s - %(name)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # HTTP client chatter drowns out per-item logs at INFO.
    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return ContextualLogger(root_logger, {})


class LogContext:
    """
    Temporarily set the correlation and/or batch ID.

    Example:
        with LogContext(batch_id="batch-1"):
            logger.info("Syncing page")
    """

    _VARS = {"correlation_id": correlation_id_var, "batch_id": batch_id_var}

    def __init__(self, **context: str):
        unknown = set(context) - set(self._VARS)
        if unknown:
            raise TypeError(f"Unsupported log context keys: {sorted(unknown)}")
        self.context = context
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self):
        for key, value in self.context.items():
            var = self._VARS[key]
            self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False


def log_execution_time(logger: logging.Logger):
    """
    Decorator that logs how long the wrapped call took, and whether it raised.

    Example:
        @log_execution_time(logger)
        def sync_batch(...):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                logger.error(
                    f"{func.__name__} failed after {duration_ms}ms: {e}",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise
            logger.info(
                f"{func.__name__} completed",
                extra={"duration_ms": round((time.perf_counter() - start) * 1000, 2)},
            )
            return result
        return wrapper
    return decorator
