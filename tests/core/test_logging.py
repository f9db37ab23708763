"""Tests for gridrun.core.logging."""

import json

import structlog

from gridrun.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


class TestLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_scoped_binding(self):
        bind_context(run="r1")
        with LogContext(invocation_id="tests.test_a.test_x()"):
            assert structlog.contextvars.get_contextvars() == {
                "run": "r1",
                "invocation_id": "tests.test_a.test_x()",
            }
        assert structlog.contextvars.get_contextvars() == {"run": "r1"}


class TestConfigureLogging:
    def teardown_method(self):
        structlog.reset_defaults()
        clear_context()

    def test_json_output_uses_ecs_fields(self, capsys):
        configure_logging(level="INFO", json_format=True, service="gridrun-tests")

        with LogContext(job_id="p:1"):
            get_logger("gridrun.tests").info("poller.cycle", total=3)

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "poller.cycle"
        assert record["total"] == 3
        assert record["job_id"] == "p:1"
        assert record["log.level"] == "info"
        assert record["service.name"] == "gridrun-tests"
        assert record["logger"] == "gridrun.tests"
        assert "@timestamp" in record

    def test_console_output_renders_named_logger(self, capsys):
        configure_logging(level="INFO", json_format=False)

        get_logger("gridrun.tests").info("bootstrap.started")

        out = capsys.readouterr().out
        assert "bootstrap.started" in out
        assert "gridrun.tests" in out

    def test_level_filters_debug(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("gridrun.tests").info("hidden")
        assert "hidden" not in capsys.readouterr().out
