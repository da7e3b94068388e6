"""Structured JSON logging for the API process and CLI tools."""

import logging
import sys

from pythonjsonlogger import jsonlogger

from marketplace.core.config import settings

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "sqlalchemy.engine")


def setup_logging() -> None:
    """Send every record to stdout as one JSON object per line.

    Extra fields passed via ``logger.info(..., extra={...})`` (entity ids,
    from/to statuses) end up as top-level keys.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": settings.app_name},
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
