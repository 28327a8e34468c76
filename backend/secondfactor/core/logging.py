"""JSON logging for the MFA service.

Every record is one JSON object per line on stdout, tagged with the service
name and environment so the collector can route security events.
"""

import logging
import sys
from typing import Any, TextIO

from pythonjsonlogger import jsonlogger

from secondfactor.core.config import settings

# Third-party loggers that drown out security events at INFO
QUIET_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "redis": logging.WARNING,
}


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that tags records with the service and environment."""

    def __init__(self, service: str, env: str):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")
        self.service = service
        self.env = env

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.pop("message", None)
        log_record["ts"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["msg"] = record.getMessage()
        log_record["service"] = self.service
        log_record["env"] = self.env


def setup_logging(level: str | None = None, stream: TextIO | None = None) -> None:
    """Route all logging through a single JSON handler. Safe to call more than once."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(ServiceJsonFormatter(settings.PROJECT_NAME, settings.ENV))
    root_logger.handlers = [handler]

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
