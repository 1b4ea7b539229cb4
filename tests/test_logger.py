"""Tests for logger.py -- setup_logging() and JsonFormatter.

Strategy: patch logging.basicConfig and inspect its arguments, since
pytest's log capture plugin interferes with real basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from docsync.config_schema import LoggingConfig
from docsync.logger import JsonFormatter, setup_logging


def _record(msg="Pass %s", args=("done",), exc_info=None, level=logging.INFO):
    return logging.LogRecord(
        name="docsync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestSetupLogging:
    @patch("docsync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        setup_logging(mode="cli")

        handlers = mock_basic.call_args.kwargs["handlers"]
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr

    @patch("docsync.logger.logging.basicConfig")
    def test_background_mode_logs_to_file(self, mock_basic, tmp_path):
        log_file = tmp_path / "bg.log"
        setup_logging(mode="background", log_file=str(log_file))

        handlers = mock_basic.call_args.kwargs["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == str(log_file)
        handlers[0].close()

    @patch("docsync.logger.logging.basicConfig")
    def test_background_default_level_is_warning(self, mock_basic, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "default.log"))
        setup_logging(mode="background")

        kwargs = mock_basic.call_args.kwargs
        assert kwargs["level"] == logging.WARNING
        kwargs["handlers"][0].close()

    @patch("docsync.logger.logging.basicConfig")
    def test_cli_default_level_is_info(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")

        assert mock_basic.call_args.kwargs["level"] == logging.INFO

    @patch("docsync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_args.kwargs["level"] == logging.DEBUG

    @patch("docsync.logger.logging.basicConfig")
    def test_env_level_honoured(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging(mode="cli")

        assert mock_basic.call_args.kwargs["level"] == logging.ERROR

    @patch("docsync.logger.logging.basicConfig")
    def test_config_level_used_without_env(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli", config=LoggingConfig(level="debug"))

        assert mock_basic.call_args.kwargs["level"] == logging.DEBUG

    @patch("docsync.logger.logging.basicConfig")
    def test_env_beats_config_level(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        setup_logging(mode="cli", config=LoggingConfig(level="DEBUG"))

        assert mock_basic.call_args.kwargs["level"] == logging.WARNING

    @patch("docsync.logger.logging.basicConfig")
    def test_config_file_used_in_background(self, mock_basic, tmp_path):
        path = str(tmp_path / "from-config.log")
        setup_logging(mode="background", config=LoggingConfig(file=path))

        handlers = mock_basic.call_args.kwargs["handlers"]
        assert [h.baseFilename for h in handlers] == [path]
        handlers[0].close()

    @patch("docsync.logger.logging.basicConfig")
    def test_cli_with_log_file_adds_file_handler(self, mock_basic, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = mock_basic.call_args.kwargs["handlers"]
        files = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(files) == 1
        files[0].close()

    @patch("docsync.logger.logging.basicConfig")
    def test_cli_ignores_log_file_env(self, mock_basic, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))
        setup_logging(mode="cli")

        handlers = mock_basic.call_args.kwargs["handlers"]
        assert not any(isinstance(h, logging.FileHandler) for h in handlers)

    @patch("docsync.logger.logging.basicConfig")
    def test_repeat_calls_replace_handlers(self, mock_basic):
        setup_logging(mode="cli")
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_count == 2
        assert mock_basic.call_args.kwargs["force"] is True
        assert mock_basic.call_args.kwargs["level"] == logging.DEBUG

    @patch("docsync.logger.logging.basicConfig")
    def test_json_format(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")

        handlers = mock_basic.call_args.kwargs["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("docsync.logger.logging.basicConfig")
    def test_asyncio_silenced(self, _mock_basic):
        setup_logging(mode="cli")
        assert logging.getLogger("asyncio").level == logging.WARNING


class TestJsonFormatter:
    def test_basic_output(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "docsync.sync.engine"
        assert data["msg"] == "Pass done"
        assert "ts" in data

    def test_includes_exception(self):
        try:
            raise RuntimeError("remote went away")
        except RuntimeError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("failed", (), exc_info=exc_info, level=logging.ERROR)
        )

        assert "\n" not in output
        assert "remote went away" in json.loads(output)["exc"]

    def test_document_context_fields(self):
        record = _record()
        record.path = "notes/plan.md"
        record.identifier = "doc-1"

        data = json.loads(JsonFormatter().format(record))

        assert data["path"] == "notes/plan.md"
        assert data["identifier"] == "doc-1"
        assert "action" not in data
