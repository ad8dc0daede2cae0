from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "progresswall"

# Third-party loggers that are too chatty at INFO for a request-parallel service.
_QUIET_LOGGERS = ("sqlalchemy.engine", "apscheduler.executors.default", "httpx")


def configure_logging(level: str) -> None:
    level_name = level.upper()
    root = logging.getLogger()
    root.setLevel(level_name)

    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        static_fields={"service": SERVICE_NAME},
    )
    handler.setFormatter(formatter)

    root.handlers.clear()
    root.addHandler(handler)

    if level_name != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
