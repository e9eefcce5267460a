"""Tests for logger.py: setup_logging() and JsonFormatter.

Strategy: mock logging.basicConfig to verify setup_logging passes the
right args, since pytest's log capture plugin interferes with real
basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from backlog_jira_sync.logger import JsonFormatter, setup_logging


class TestSetupLogging:
    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_logs_to_stderr(self, mock_basic, clean_env):
        setup_logging()

        mock_basic.assert_called_once()
        kwargs = mock_basic.call_args[1]
        handlers = kwargs["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr
        assert kwargs["level"] == logging.INFO
        assert kwargs["force"] is True

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_log_file_adds_handler(self, mock_basic, tmp_path, clean_env):
        log_file = tmp_path / "sync.log"
        setup_logging(log_file=str(log_file))

        handlers = mock_basic.call_args[1]["handlers"]
        try:
            assert len(handlers) == 2
            assert isinstance(handlers[1], logging.FileHandler)
            assert handlers[1].baseFilename == str(log_file)
            assert handlers[1].mode == "a"
        finally:
            handlers[1].close()

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "ERROR")
        setup_logging(debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "error")
        setup_logging(level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_config_level_used_without_env(self, mock_basic, clean_env):
        setup_logging(level="warning")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_unknown_level_falls_back_to_info(self, mock_basic, clean_env):
        clean_env.setenv("LOG_LEVEL", "CHATTY")
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_json_format(self, mock_basic, clean_env):
        setup_logging(debug_format="json")
        handler = mock_basic.call_args[1]["handlers"][0]
        assert isinstance(handler.formatter, JsonFormatter)

    @patch("backlog_jira_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, mock_basic, clean_env):
        setup_logging()
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


class TestJsonFormatter:
    def _record(self, **kwargs) -> logging.LogRecord:
        return logging.LogRecord(
            name="backlog_jira_sync.sync.engine",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Pushed %s",
            args=("task-1",),
            exc_info=kwargs.get("exc_info"),
        )

    def test_fields(self):
        entry = json.loads(JsonFormatter().format(self._record()))
        assert set(entry) == {"ts", "level", "logger", "msg"}
        assert entry["level"] == "INFO"
        assert entry["logger"] == "backlog_jira_sync.sync.engine"
        assert entry["msg"] == "Pushed task-1"

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = self._record(exc_info=sys.exc_info())
        entry = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in entry["exc"]

    def test_single_line(self):
        assert "\n" not in JsonFormatter().format(self._record())
