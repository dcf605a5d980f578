"""
Centralized logging configuration.
Structured logging for the ingestion loops, the audit trail of enrichment jobs,
and per-operation timings.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

ROOT_LOGGER_NAME = "lots_ingest"


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for file output.
    Structured fields passed to ``StructuredLogger`` are merged into the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, 'extra_data', None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry.update({
            "process_id": record.process,
            "thread_id": record.thread,
        })

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Console formatter appending structured fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra_data = getattr(record, 'extra_data', None)
        if not extra_data:
            return base
        fields = " ".join(f"{k}={v}" for k, v in extra_data.items())
        return f"{base} | {fields}"


class StructuredLogger:
    """
    Wrapper around standard logger to provide structured logging methods.
    Keyword arguments become structured fields; ``exc_info`` is forwarded.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, exc_info: bool = False, **kwargs):
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={'extra_data': extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Setup application logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for JSON log output
        enable_console: Whether to log to console
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "()": KeyValueFormatter,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            ROOT_LOGGER_NAME: {
                "level": log_level,
                "handlers": [],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": [],
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
                "handlers": [],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    targets = [ROOT_LOGGER_NAME, "uvicorn", "sqlalchemy.engine"]

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        for name in targets:
            config["loggers"][name]["handlers"].append("console")
        config["root"]["handlers"].append("console")

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        for name in targets:
            config["loggers"][name]["handlers"].append("file")
        config["root"]["handlers"].append("file")

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

    Module names already inside the package are used as-is so that
    ``get_logger(__name__)`` does not double the prefix.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    lot_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Log pipeline events for audit trails.

    Args:
        event_type: Type of event (e.g., 'bidding_persisted', 'lot_classified')
        details: Event-specific details
        lot_id: Lot identifier if applicable
        request_id: Request ID for tracing
    """
    audit_logger = get_logger("audit")
    audit_logger.info(
        f"Business event: {event_type}",
        event_type=event_type,
        lot_id=lot_id,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    perf_logger = get_logger("performance")
    data = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)

    perf_logger.info(
        f"Performance: {operation}",
        operation=operation,
        **data
    )
