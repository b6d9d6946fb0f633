"""
Structured Logging Setup

Consistent logging configuration across the broker, the client and the CLI.
Uses JSON format for structured logs by default, plain text when verbose.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# Loggers handed out so far, so a later --verbose can reconfigure them
_service_loggers: dict[str, logging.Logger] = {}


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in (
                "name", "msg", "args", "levelname", "levelno", "pathname",
                "filename", "module", "exc_info", "exc_text", "stack_info",
                "lineno", "funcName", "created", "msecs", "relativeCreated",
                "thread", "threadName", "processName", "process", "service",
                "message", "taskName",
            ):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "broker", "client.cache")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"confmanager.{service_name}")
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    _service_loggers[service_name] = logger
    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Level and format come from CONFMANAGER_LOG_LEVEL / CONFMANAGER_LOG_FORMAT.
    """
    log_level = os.environ.get("CONFMANAGER_LOG_LEVEL", "INFO")
    json_format = os.environ.get("CONFMANAGER_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_service_loggers(log_level: str, json_format: bool) -> None:
    """Re-apply level and format to every service logger created so far"""
    os.environ["CONFMANAGER_LOG_LEVEL"] = log_level
    os.environ["CONFMANAGER_LOG_FORMAT"] = "json" if json_format else "text"
    for service_name in list(_service_loggers):
        setup_logging(service_name, log_level, json_format)


def log_config_change(
    logger: logging.LoggerAdapter,
    application: str,
    key: str,
    value: Any,
    success: bool = True,
) -> None:
    """Log a configuration change on one application"""
    if success:
        logger.info(
            f"Configuration changed for {application}: {key} = {value!r}",
            extra={"application": application, "key": key, "value": value},
        )
    else:
        logger.warning(
            f"Rejected configuration change for {application}: {key}",
            extra={"application": application, "key": key},
        )
