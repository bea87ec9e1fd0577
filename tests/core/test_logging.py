"""Tests for structured logging helpers."""

import pytest
import structlog

from replyflow.core.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    rename_ecs_fields,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def test_log_context_binds_and_clears():
    with LogContext(workflow_id="wf-1", run_id="run-1"):
        assert structlog.contextvars.get_contextvars() == {"workflow_id": "wf-1", "run_id": "run-1"}
    assert structlog.contextvars.get_contextvars() == {}


def test_nested_log_context_restores_outer_value():
    with LogContext(run_id="outer"):
        with LogContext(run_id="inner"):
            assert structlog.contextvars.get_contextvars()["run_id"] == "inner"
        assert structlog.contextvars.get_contextvars()["run_id"] == "outer"


def test_bind_and_unbind():
    bind_context(account_id="ig1")
    assert structlog.contextvars.get_contextvars()["account_id"] == "ig1"
    unbind_context("account_id")
    assert "account_id" not in structlog.contextvars.get_contextvars()


def test_ecs_field_names():
    event = rename_ecs_fields(None, "info", {"timestamp": "t", "level": "info", "event": "x"})
    assert event == {"@timestamp": "t", "log.level": "info", "event": "x"}


def test_invalid_level():
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging(level="LOUD")


def test_json_output(capsys):
    configure_logging(level="INFO", json_format=True, service="replyflow-test")
    with LogContext(run_id="abc"):
        get_logger("test").info("run.start", nodes=2)

    out = capsys.readouterr().out
    assert '"event": "run.start"' in out
    assert '"service.name": "replyflow-test"' in out
    assert '"run_id": "abc"' in out
    assert '"log.level": "info"' in out


def test_level_filtering(capsys):
    configure_logging(level="WARNING", json_format=True)
    get_logger("test").info("phase.start")
    assert "phase.start" not in capsys.readouterr().out
