"""Tests for JSON and console log formatters."""

import json
import logging
import sys

import pytest

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter


def _make_record(
    msg="test message",
    level=logging.INFO,
    name="test.logger",
    exc_info=None,
    **extras,
):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extras.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clear_context():
    set_log_context(stage="", service="", target_url="")
    yield
    set_log_context(stage="", service="", target_url="")


class TestJSONFormatter:

    def test_formats_basic_json_with_required_fields(self):
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "test.logger"
        assert output["message"] == "test message"
        assert output["ts"].endswith("Z")

    def test_includes_context_fields(self):
        set_log_context(stage="fleet", service="chain-42", target_url="http://h/logs/chain-42")

        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["stage"] == "fleet"
        assert output["service"] == "chain-42"
        assert output["target_url"] == "http://h/logs/chain-42"

    def test_omits_empty_context(self):
        output = json.loads(JSONFormatter().format(_make_record()))

        assert "stage" not in output
        assert "service" not in output

    def test_includes_domain_extra_fields(self):
        record = _make_record(batch_id=3, offset=128, packet_id=7, queue_depth=2)

        output = json.loads(JSONFormatter().format(record))

        assert output["batch_id"] == 3
        assert output["offset"] == 128
        assert output["packet_id"] == 7
        assert output["queue_depth"] == 2

    def test_ignores_unknown_extras(self):
        output = json.loads(JSONFormatter().format(_make_record(custom_thing="x")))

        assert "custom_thing" not in output

    def test_coerces_numeric_fields(self):
        record = _make_record(batch_id="12", duration_ms="1.5", bytes="not-a-number")

        output = json.loads(JSONFormatter().format(record))

        assert output["batch_id"] == 12
        assert output["duration_ms"] == 1.5
        assert output["bytes"] is None

    def test_sanitizes_url_fields(self):
        record = _make_record(sink_url="http://sink/ingest?token=abc123&x=1")

        output = json.loads(JSONFormatter().format(record))

        assert output["sink_url"] == "http://sink/ingest?token=[REDACTED]&x=1"

    def test_source_location_on_debug_and_error(self):
        formatter = JSONFormatter()

        assert "file" in json.loads(formatter.format(_make_record(level=logging.DEBUG)))
        assert "file" in json.loads(formatter.format(_make_record(level=logging.ERROR)))
        assert "file" not in json.loads(formatter.format(_make_record(level=logging.INFO)))

    def test_includes_exception(self):
        try:
            raise ValueError("bad offset")
        except ValueError:
            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = json.loads(JSONFormatter().format(record))

        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "bad offset"
        assert "Traceback" in output["exception"]["stacktrace"]


class TestConsoleFormatter:

    def _formatter(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = False
        return formatter

    def test_plain_message(self):
        output = self._formatter().format(_make_record(msg="hello"))

        assert output.endswith(" - INFO - hello")

    def test_prefix_includes_stage_and_service(self):
        set_log_context(stage="fleet", service="chain-42")

        output = self._formatter().format(_make_record())

        assert "[fleet] - [chain-42]" in output

    def test_tags_endpoint_batch_and_packet(self):
        record = _make_record(msg="queued", target_url="http://h/logs/a", batch_id=3, packet_id=9)

        output = self._formatter().format(record)

        assert output.endswith("[http://h/logs/a] [batch:3] [packet:9] queued")

    def test_target_url_from_context(self):
        set_log_context(target_url="http://h/logs/b")

        output = self._formatter().format(_make_record(msg="tick"))

        assert output.endswith("[http://h/logs/b] tick")

    def test_traceback_appended_for_errors(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = self._formatter().format(record)

        assert "RuntimeError: boom" in output

    def test_colors_level_name_when_enabled(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = True

        output = formatter.format(_make_record(level=logging.WARNING))

        assert "\033[33mWARNING\033[0m" in output
