"""
Unit tests for logging setup
"""

import logging
import logging.handlers

import pytest

from config import LoggingConfig
from session_tracer.logging_config import setup_logging, setup_logging_from_config


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test root logger configuration"""

    def test_console_and_file_handlers(self, tmp_path, restore_root_logger):
        """Test both handlers are installed and the file is written"""
        log_file = tmp_path / "logs" / "tracer.log"
        setup_logging(log_level="debug", log_file=str(log_file))

        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)

        logging.getLogger("session_tracer.test").info("hello from test")
        for handler in root.handlers:
            handler.flush()
        assert "hello from test" in log_file.read_text(encoding="utf-8")

    def test_console_only(self, restore_root_logger):
        """Test log_file=None skips the file handler"""
        setup_logging(log_level="WARNING", log_file=None)

        root = restore_root_logger
        assert root.level == logging.WARNING
        assert not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)

    def test_from_config(self, tmp_path, restore_root_logger):
        """Test setup from a LoggingConfig section"""
        setup_logging_from_config(LoggingConfig(level="error", file=str(tmp_path / "x.log")))
        assert restore_root_logger.level == logging.ERROR
