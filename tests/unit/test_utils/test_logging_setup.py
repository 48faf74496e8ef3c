"""Tests for logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from httprunner.config.settings import LoggingConfig
from httprunner.utils.logging import setup_logging

pytestmark = pytest.mark.usefixtures("restore_logging")


class TestSetupLogging:
    def test_level_applied(self) -> None:
        setup_logging(LoggingConfig(level="debug"))
        assert logging.getLogger("httprunner").level == logging.DEBUG
        assert logging.getLogger("uvicorn.access").level == logging.DEBUG

    def test_repeated_calls_do_not_stack_handlers(self) -> None:
        setup_logging()
        count = len(logging.getLogger("httprunner").handlers)
        setup_logging()
        assert len(logging.getLogger("httprunner").handlers) == count

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "httprunner.log"
        setup_logging(LoggingConfig(file=str(log_file), format="%(message)s"))
        logging.getLogger("httprunner.test").warning("written to file")
        for handler in logging.getLogger("httprunner").handlers:
            handler.flush()
        assert "written to file" in log_file.read_text()

    def test_uvicorn_shares_handlers(self) -> None:
        setup_logging()
        ours = set(logging.getLogger("httprunner").handlers)
        assert ours <= set(logging.getLogger("uvicorn").handlers)
        assert logging.getLogger("uvicorn.error").propagate is True
