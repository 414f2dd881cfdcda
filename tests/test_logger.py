"""Tests for logger.py -- setup_logging() and JsonFormatter.

Covers:
- CLI mode logging (stderr handler, optional file handler)
- Embedded mode logging (file only)
- Debug level override and LOG_LEVEL handling
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from brew_sync.logger import JsonFormatter, setup_logging


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("brew_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        """CLI mode passes StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("brew_sync.logger.logging.basicConfig")
    def test_cli_mode_adds_file_handler(self, mock_basic, tmp_path):
        """A log file in CLI mode is written in addition to stderr."""
        log_file = tmp_path / "sync.log"
        setup_logging(mode="cli", log_file=str(log_file))

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 2
        assert isinstance(handlers[1], logging.FileHandler)
        handlers[1].close()

    @patch("brew_sync.logger.logging.basicConfig")
    def test_embedded_mode_logs_to_file(self, mock_basic, tmp_path):
        """Embedded mode passes filename to basicConfig."""
        log_file = str(tmp_path / "embedded.log")
        setup_logging(mode="embedded", log_file=log_file)

        kwargs = mock_basic.call_args[1]
        assert kwargs["filename"] == log_file
        assert "handlers" not in kwargs

    @patch("brew_sync.logger.logging.basicConfig")
    def test_embedded_mode_defaults_to_warning(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("LOG_FILE", "/tmp/brew-sync-test.log")
        setup_logging(mode="embedded")

        kwargs = mock_basic.call_args[1]
        assert kwargs["level"] == logging.WARNING
        assert kwargs["filename"] == "/tmp/brew-sync-test.log"

    @patch("brew_sync.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic):
        """debug=True passes DEBUG level to basicConfig."""
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("brew_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        """LOG_LEVEL env var is reflected in basicConfig level."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("brew_sync.logger.logging.basicConfig")
    def test_config_level_used_without_env(self, mock_basic, monkeypatch):
        """The config file level applies when LOG_LEVEL is unset."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli", level="WARNING")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("brew_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """debug=True overrides LOG_LEVEL env var."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("brew_sync.logger.logging.basicConfig")
    def test_invalid_level_falls_back_to_info(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("brew_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")
        handler = mock_basic.call_args[1]["handlers"][0]
        assert isinstance(handler.formatter, JsonFormatter)

    @patch("brew_sync.logger.logging.basicConfig")
    def test_third_party_loggers_silenced(self, mock_basic, monkeypatch):
        """HTTP and AWS loggers are raised to WARNING below DEBUG."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        for name in ("urllib3", "botocore", "boto3", "s3transfer"):
            assert logging.getLogger(name).level == logging.WARNING


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def _record(self, msg="hello %s", args=("world",), exc_info=None):
        return logging.LogRecord(
            name="brew_sync.sync.engine",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg=msg,
            args=args,
            exc_info=exc_info,
        )

    def test_single_line_json(self):
        output = JsonFormatter().format(self._record())
        assert "\n" not in output
        entry = json.loads(output)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "brew_sync.sync.engine"
        assert entry["msg"] == "hello world"
        assert "ts" in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_info = sys.exc_info()
        entry = json.loads(JsonFormatter().format(self._record(exc_info=exc_info)))
        assert "RuntimeError: boom" in entry["exc"]
