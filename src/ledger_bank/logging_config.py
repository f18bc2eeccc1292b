"""
Logging configuration for the ledger-bank service.

Everything under the ``ledger_bank`` logger namespace is written to a
rotating file in LOG_DIR; warnings and errors are echoed to stderr as well.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from . import settings

SERVICE_LOGGER = "ledger_bank"
LEDGER_LOG_FILE = "ledger_bank.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

_HANDLER_PREFIX = "ledger_bank."


def _build_handlers(log_file: Path, level: int) -> List[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    to_file = RotatingFileHandler(log_file, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    to_file.set_name(_HANDLER_PREFIX + "file")
    to_file.setLevel(level)

    to_stderr = logging.StreamHandler()
    to_stderr.set_name(_HANDLER_PREFIX + "console")
    to_stderr.setLevel(logging.WARNING)

    for handler in (to_file, to_stderr):
        handler.setFormatter(formatter)
    return [to_file, to_stderr]


def setup_logging() -> logging.Logger:
    """
    Attach the service handlers; safe to call more than once.
    """
    level = logging.getLevelName(settings.LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.getLogger().setLevel(level)

    service = logging.getLogger(SERVICE_LOGGER)
    service.setLevel(level)
    for handler in list(service.handlers):
        if (handler.get_name() or "").startswith(_HANDLER_PREFIX):
            service.removeHandler(handler)
            handler.close()
    for handler in _build_handlers(log_dir / LEDGER_LOG_FILE, level):
        service.addHandler(handler)

    # SQL statements only when explicitly echoing
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.SQL_ECHO else logging.WARNING)
    return service


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
