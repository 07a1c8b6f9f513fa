import logging
import json
import os
import sys
from pathlib import Path
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Fields passed via logger.info("msg", extra={...}) that end up in the JSON entry
EXTRA_FIELDS = (
    "correlation_id", "method", "path", "status", "duration_ms", "client_ip",
    "error", "error_type", "service",
    "job_id", "queue", "operation", "attempt", "max_attempts", "delay_ms",
    "entity_id", "key", "count", "deleted", "concurrency", "poll_interval",
)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter with correlation ID injection"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key in EXTRA_FIELDS:
            if getattr(record, key, None) not in (None, ""):
                entry[key] = getattr(record, key)

        # Add source location for errors
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for local development"""

    def __init__(self):
        super().__init__(
            '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
            datefmt='%H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {key: getattr(record, key) for key in EXTRA_FIELDS if getattr(record, key, None) not in (None, "")}
        if context:
            line = f"{line} {context}"
        return line


def setup_logger(name: str = "catalog", level: str = "INFO") -> logging.Logger:
    """
    Setup application logger with structured JSON output.

    In production (Railway, or LOG_FORMAT=json) outputs JSON to stdout for
    log drain ingestion. LOG_FILE enables a rotating file for local runs.
    """
    logger = logging.getLogger(name)

    # Don't add handlers if they already exist
    if logger.handlers:
        return logger

    log_level = getattr(logging, os.getenv("LOG_LEVEL", level).upper(), logging.INFO)
    logger.setLevel(log_level)

    is_production = bool(os.getenv("RAILWAY_ENVIRONMENT")) or os.getenv("LOG_FORMAT") == "json"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter() if is_production else SimpleFormatter())
    logger.addHandler(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file and not is_production:
        try:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(StructuredFormatter())
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not setup file logging: {e}")

    return logger


# Create default logger instance
logger = setup_logger()


def get_logger(name: str = None) -> logging.Logger:
    """Get a child of the service logger so records share its handlers"""
    if name:
        return logger.getChild(name)
    return logger
