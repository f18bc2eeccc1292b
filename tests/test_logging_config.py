"""Tests for the service logging setup."""

from pathlib import Path

from ledger_bank import settings
from ledger_bank.logging_config import LEDGER_LOG_FILE, get_logger, setup_logging


def test_setup_logging_is_idempotent():
    setup_logging()
    service = setup_logging()

    names = sorted(h.get_name() for h in service.handlers)
    assert names == ["ledger_bank.console", "ledger_bank.file"]


def test_service_records_reach_the_log_file():
    service = setup_logging()
    get_logger("ledger_bank.tests").warning("ledger log check")
    for handler in service.handlers:
        handler.flush()

    log_file = Path(settings.LOG_DIR) / LEDGER_LOG_FILE
    assert "ledger log check" in log_file.read_text(encoding="utf-8")
