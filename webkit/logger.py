"""
webkit - Logger Initialization
================================

What:  Configures the root logger from LoggerConf and provides the fatal-exit helper.
Why:   One consistent format across the application, uvicorn and SQLAlchemy,
       with the current request ID stamped on every record.
How:   logging.basicConfig(force=True) with a stdout handler and, optionally,
       a size-rotated file handler. A filter on each handler injects the
       request ID held by RequestIDMiddleware's ContextVar.
When:  Immediately after configuration is loaded, before anything else logs.

Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s
"""

import logging
import logging.handlers
import sys
from typing import List, NoReturn

from webkit.config import LoggerConf
from webkit.middleware.request_id import request_id_var

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")

logger = logging.getLogger("webkit")


class RequestIDFilter(logging.Filter):
    """Adds `request_id` to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("") or "-"
        return True


def init_logger(conf: LoggerConf) -> None:
    """
    Configure root logging.

    Args:
        conf: Logger section of the configuration.

    Handlers:
        - stdout when conf.console is true (Docker captures stdout)
        - RotatingFileHandler when conf.filename is set; rotates at
          conf.max_size MB and keeps conf.max_backups old files
    """
    handlers: List[logging.Handler] = []

    if conf.console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if conf.filename:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                conf.filename,
                maxBytes=conf.max_size * 1024 * 1024,
                backupCount=conf.max_backups,
                encoding="utf-8",
            )
        )

    if not handlers:
        handlers.append(logging.NullHandler())

    request_id_filter = RequestIDFilter()
    for handler in handlers:
        handler.addFilter(request_id_filter)

    logging.basicConfig(
        level=getattr(logging, conf.level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def sync() -> None:
    """Flush every handler on the root logger."""
    for handler in logging.getLogger().handlers:
        handler.flush()


def fatal(msg: str, *args: object) -> NoReturn:
    """
    Log at CRITICAL and terminate the process with status 1.

    Used for every unrecoverable startup, bind or shutdown failure.
    """
    logger.critical(msg, *args)
    sync()
    raise SystemExit(1)
