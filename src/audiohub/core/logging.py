"""Logging configuration for the audiohub media service."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

# Context variable for storing the upload correlation id in request scope
upload_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "upload_id", default=None
)

_STANDARD_FIELDS = frozenset(
    [
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName",
        "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "getMessage", "taskName",
    ]
)


class CloudLoggingFormatter(logging.Formatter):
    """JSON formatter for Google Cloud Logging.

    Formats log records as single-line JSON objects that Cloud Logging
    can properly parse and display. Exceptions and tracebacks are included
    as strings within the JSON structure.
    """

    # Map Python logging levels to Cloud Logging severity
    SEVERITY_MAP = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON.

        Args:
            record: Log record to format

        Returns:
            Single-line JSON string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        upload_id = upload_id_context.get()
        if upload_id:
            log_entry["upload_id"] = upload_id

        # Add extra fields from logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _STANDARD_FIELDS:
                log_entry[key] = value

        if record.exc_info:
            exc_text = "".join(traceback.format_exception(*record.exc_info))
            log_entry["exception"] = exc_text
            log_entry["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else "Unknown"
            )
            log_entry["exception_message"] = (
                str(record.exc_info[1]) if record.exc_info[1] else ""
            )

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class UploadContextFilter(logging.Filter):
    """Prefix plain-text records with the current upload id, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        upload_id = upload_id_context.get()
        record.upload_tag = f"[{upload_id}] " if upload_id else ""
        return True


def setup_logging() -> None:
    """Configure structured logging for the application.

    Sets up logging to output structured logs to stdout. For cloud
    environments (non-local) uses JSON formatting for Cloud Logging
    ingestion; for local development uses a simple text format.
    """
    from audiohub.core.config import settings

    if settings.ENV == "local":
        log_level = logging.DEBUG
    else:
        log_level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)

    if settings.ENV == "local":
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(upload_tag)s%(message)s"
        )
        handler.addFilter(UploadContextFilter())
    else:
        formatter = CloudLoggingFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.setLevel(log_level)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False

    # Cloud SDKs are chatty at DEBUG
    for logger_name in ["botocore", "boto3", "urllib3", "google"]:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.INFO))
