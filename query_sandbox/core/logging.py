"""JSON logging for the query sandbox."""
from __future__ import annotations

import logging

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "agent-query-sandbox"


class _ServiceContextFilter(logging.Filter):
    """Stamp every record with the service name and deployment environment."""

    def __init__(self, env: str) -> None:
        super().__init__()
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "service"):
            record.service = SERVICE_NAME
        if not hasattr(record, "env"):
            record.env = self.env
        return True


def setup_logging(level: str = "INFO", *, env: str = "dev") -> None:
    """Configure root logging with a JSON formatter."""

    root_logger = logging.getLogger()
    # Drop handlers left by a previous call (reloads, test clients).
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    handler.addFilter(_ServiceContextFilter(env))
    root_logger.addHandler(handler)


__all__ = ["setup_logging"]
