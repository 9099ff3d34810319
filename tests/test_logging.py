"""
Tests for structured logging helpers.
"""

from datetime import datetime, timezone

import pytest
import structlog

from core import __version__
from core.logging import (
    LogContext,
    _add_app_context,
    _format_datetimes,
    bind_context,
    clear_context,
)


@pytest.fixture(autouse=True)
def empty_context():
    clear_context()
    yield
    clear_context()


def test_app_context_added():
    event = _add_app_context(None, "info", {"event": "window_emitted"})

    assert event["app"] == "commit_stream"
    assert event["version"] == __version__


def test_datetimes_rendered_as_iso():
    cursor = datetime(2024, 1, 1, tzinfo=timezone.utc)

    event = _format_datetimes(None, "info", {"event": "source_starting", "cursor": cursor, "restored": True})

    assert event["cursor"] == "2024-01-01T00:00:00+00:00"
    assert event["restored"] is True


def test_log_context_unbinds_on_exit():
    with LogContext(source="apache/flink"):
        assert structlog.contextvars.get_contextvars()["source"] == "apache/flink"

    assert "source" not in structlog.contextvars.get_contextvars()


def test_log_context_restores_outer_binding():
    bind_context(source="apache/flink", command="run")

    with LogContext(source="apache/kafka"):
        assert structlog.contextvars.get_contextvars()["source"] == "apache/kafka"

    assert structlog.contextvars.get_contextvars() == {"source": "apache/flink", "command": "run"}
