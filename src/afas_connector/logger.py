"""Package logging.

Every module logs through ``get_logger(__name__)``. Records propagate to the
``afas_connector`` logger, which carries one rotating file handler under
``AFAS_LOG_DIR``. The log file and its directory are only created when the
first record is written.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

PACKAGE_LOGGER = "afas_connector"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class LogFileHandler(RotatingFileHandler):
    """Rotating file handler that creates its directory on first use."""

    def __init__(self, filename: str) -> None:
        super().__init__(
            filename,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=5,
            encoding="utf-8",
            delay=True,
        )

    def _open(self):
        os.makedirs(os.path.dirname(self.baseFilename), exist_ok=True)
        return super()._open()


def log_path() -> str:
    log_dir = os.getenv("AFAS_LOG_DIR") or os.path.join(os.getcwd(), "logs")
    return os.path.join(log_dir, os.getenv("AFAS_LOG_FILE", "afas_connector.log"))


def get_logger(name: str) -> logging.Logger:
    package = logging.getLogger(PACKAGE_LOGGER)
    if not any(isinstance(h, LogFileHandler) for h in package.handlers):
        package.setLevel(logging.DEBUG)
        handler = LogFileHandler(log_path())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package.addHandler(handler)

    return logging.getLogger(name)
