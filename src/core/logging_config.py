"""Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only
installs handlers. With ``log_verbosity="errors"`` the service's own
loggers emit WARNING and above, with ``"all"`` informational records too.
When ``log_file`` is set, a midnight-rotating file handler is the
append-only operational log and keeps ``log_retention_days`` files.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from src.core.config import Settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Top-level packages whose loggers obey log_verbosity
SERVICE_LOGGERS = ("src", "scripts")

_HANDLER_NAME = "postrelay"


def configure_logging(settings: Settings) -> None:
    """Install console and optional file handlers on the root logger.

    Safe to call more than once; previously installed handlers are replaced.
    """
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())

    for handler in list(root.handlers):
        if handler.get_name() and handler.get_name().startswith(_HANDLER_NAME):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.set_name(f"{_HANDLER_NAME}.console")
    console.setFormatter(formatter)
    root.addHandler(console)

    if settings.log_file:
        path = Path(settings.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=settings.log_retention_days,
            encoding="utf-8",
        )
        file_handler.set_name(f"{_HANDLER_NAME}.file")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    service_level = logging.INFO if settings.log_verbosity == "all" else logging.WARNING
    for name in SERVICE_LOGGERS:
        logging.getLogger(name).setLevel(service_level)
