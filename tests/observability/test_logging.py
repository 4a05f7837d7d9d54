"""
Tests for observability.logging.
"""
import io
import logging
import sys

import structlog

from observability.logging import LogContext, LoggingConfig, get_logger, setup_logging, shutdown_logging


class TestLogContext:
    def test_binds_inside_block_only(self):
        with LogContext(phase="bootstrap", step="adapters"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["phase"] == "bootstrap"
            assert bound["step"] == "adapters"

        assert "phase" not in structlog.contextvars.get_contextvars()

    def test_nested_restores_outer_value(self):
        with LogContext(phase="bootstrap"):
            with LogContext(phase="auth"):
                assert structlog.contextvars.get_contextvars()["phase"] == "auth"
            assert structlog.contextvars.get_contextvars()["phase"] == "bootstrap"


class TestSetup:
    def teardown_method(self):
        shutdown_logging()

    def test_level_applied_to_root(self):
        shutdown_logging()
        setup_logging(LoggingConfig(level="DEBUG", json_format=False))

        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        assert LoggingConfig(level="LOUD").numeric_level == logging.INFO

    def test_file_handler(self, tmp_path):
        shutdown_logging()
        path = tmp_path / "logs" / "fanzone.log"
        setup_logging(LoggingConfig(log_to_console=False, log_to_file=True, log_file_path=path))

        get_logger("fanzone.test").warning("Written to file", answer=42)
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "Written to file" in path.read_text()
        assert '"answer": 42' in path.read_text()

    def test_shutdown_detaches_handlers_with_closed_stream(self, monkeypatch):
        shutdown_logging()
        stream = io.StringIO()
        monkeypatch.setattr(sys, "stdout", stream)
        setup_logging(LoggingConfig(json_format=True))
        stream.close()

        shutdown_logging()

        assert logging.getLogger().handlers == []
