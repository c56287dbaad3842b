# sheetbridge/utils/logging_config.py

"""
Logging setup for the Flask app, CLI commands and Celery workers.

Structured context is passed through ``extra={...}``; the formatter appends any
such fields to the message so they survive plain-text log sinks.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

QUIET_LOGGERS = ("urllib3", "sqlalchemy.engine", "celery.worker.strategy")


class StructuredFormatter(logging.Formatter):
    """Format records and append ``extra`` fields as ``key=value`` pairs."""

    def format(self, record):
        base = super().format(record)
        extras = {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}
        if not extras:
            return base
        rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{base} | {rendered}"


def _resolve_level(value):
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(app):
    """Configure the root logger from app config. Safe to call more than once."""
    level = _resolve_level(app.config.get("LOG_LEVEL", "INFO"))
    formatter = StructuredFormatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_sheetbridge_handler", False):
            root.removeHandler(handler)
            handler.close()

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._sheetbridge_handler = True
        root.addHandler(console)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "migration.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler._sheetbridge_handler = True
        root.addHandler(file_handler)

    root.setLevel(level)
    app.logger.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return root
