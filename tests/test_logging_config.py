"""Tests for logging_config.py utility functions."""

import os
import sys
import logging
from unittest.mock import patch
from item_images.core.logging_config import (
    setup_logger,
    get_logger,
    logger,
)


class TestSetupLogger:
    """Tests for setup_logger function."""

    def test_setup_logger_default_parameters(self):
        """Test setup_logger with default parameters."""
        with patch.dict(os.environ, {"LOG_LEVEL": "INFO"}):
            test_logger = setup_logger()
        assert test_logger.name == "item-images"
        assert test_logger.level == logging.INFO
        assert len(test_logger.handlers) == 1
        assert not test_logger.propagate

    def test_setup_logger_custom_name(self):
        """Test setup_logger with custom name."""
        test_logger = setup_logger(name="test-custom-logger")
        assert test_logger.name == "test-custom-logger"

    def test_setup_logger_custom_level_by_parameter(self):
        """Test setup_logger with custom level via parameter."""
        test_logger = setup_logger(name="test-param-level", level="DEBUG")
        assert test_logger.level == logging.DEBUG

    def test_setup_logger_custom_level_by_env_var(self):
        """Test setup_logger with custom level via environment variable."""
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}):
            test_logger = setup_logger(name="test-env-level")
            assert test_logger.level == logging.WARNING

    def test_setup_logger_invalid_level_defaults_to_info(self):
        """Test setup_logger with invalid level defaults to INFO."""
        test_logger = setup_logger(name="test-invalid-level", level="INVALID_LEVEL")
        assert test_logger.level == logging.INFO

    def test_setup_logger_structured_format(self):
        """Test setup_logger with structured format."""
        with patch.dict(os.environ, {"LOG_FORMAT": "structured"}):
            test_logger = setup_logger(name="test-structured", format_type="structured")
        format_string = test_logger.handlers[0].formatter._fmt
        assert "%(asctime)s" in format_string
        assert "%(filename)s" in format_string
        assert "%(lineno)d" in format_string
        assert "%(funcName)s" in format_string

    def test_setup_logger_env_format_override(self):
        """Test setup_logger format override via environment variable."""
        with patch.dict(os.environ, {"LOG_FORMAT": "simple"}):
            test_logger = setup_logger(name="test-env-format", format_type="structured")
            format_string = test_logger.handlers[0].formatter._fmt
            assert "%(filename)s" not in format_string

    def test_setup_logger_no_duplicate_handlers(self):
        """Test that setup_logger doesn't add duplicate handlers."""
        test_logger1 = setup_logger(name="test-no-duplicates")
        test_logger2 = setup_logger(name="test-no-duplicates")

        assert test_logger1 is test_logger2
        assert len(test_logger1.handlers) == 1

    def test_setup_logger_handler_uses_stderr(self):
        """Test that logger handler keeps stdout free for command output."""
        test_logger = setup_logger(name="test-stderr")
        assert test_logger.handlers[0].stream is sys.stderr


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_default_name(self):
        """Test get_logger with default name."""
        assert get_logger().name == "item-images"

    def test_get_logger_namespaces_child_names(self):
        """Test child names are prefixed with the package logger name."""
        assert get_logger("converter").name == "item-images.converter"
        assert get_logger("item-images.upload").name == "item-images.upload"

    def test_get_logger_returns_configured_logger(self):
        """Test that get_logger returns a properly configured logger."""
        test_logger = get_logger("test-configured")
        assert len(test_logger.handlers) == 1
        assert not test_logger.propagate


class TestDefaultLogger:
    """Tests for default logger instance."""

    def test_default_logger_exists(self):
        """Test that default logger instance is created."""
        assert isinstance(logger, logging.Logger)
        assert logger.name == "item-images"

    def test_default_logger_configured(self):
        """Test that default logger is properly configured."""
        assert len(logger.handlers) >= 1
        assert not logger.propagate
