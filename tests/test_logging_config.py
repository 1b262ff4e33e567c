"""
Logging configuration tests — formatters, request context stamping, format selection.
"""

import json
import logging
from types import SimpleNamespace

import pytest
from flask import g

from worksite.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    _use_json,
)


def _record(msg="Transition applied", **extra):
    record = logging.LogRecord("worksite.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_carries_entity_extras(self):
        record = _record(work_package_id=4, event_type="transition", category=None)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Transition applied"
        assert entry["work_package_id"] == 4
        assert entry["event_type"] == "transition"
        assert "category" not in entry

    def test_readable_appends_context_tag(self):
        record = _record(work_package_id=3, request_id="9f1c", duration_ms=12.4)

        line = ReadableFormatter().format(record)

        assert line.endswith("[req=9f1c wp=3 12ms]")

    def test_readable_without_context_has_no_tag(self):
        assert not ReadableFormatter().format(_record()).endswith("]")


class TestRequestContextFilter:

    def test_outside_request_leaves_record_alone(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert not hasattr(record, "work_package_id")

    def test_stamps_request_id_and_url_ids(self, app):
        with app.test_request_context("/api/v1/work-packages/5/start", method="POST"):
            g.request_id = "abc"
            record = _record()

            RequestContextFilter().filter(record)

        assert record.request_id == "abc"
        assert record.work_package_id == 5

    def test_explicit_extra_wins(self, app):
        with app.test_request_context("/api/v1/steps/7/tasks", method="POST"):
            record = _record(step_id=99)

            RequestContextFilter().filter(record)

        assert record.step_id == 99


class TestFormatSelection:

    @pytest.mark.parametrize("config,expected", [
        ({"LOG_FORMAT": "json", "DEBUG": True}, True),
        ({"LOG_FORMAT": "READABLE"}, False),
        ({"LOG_FORMAT": "", "DEBUG": False, "TESTING": False}, True),
        ({"LOG_FORMAT": "", "DEBUG": True}, False),
        ({"TESTING": True}, False),
    ])
    def test_use_json(self, config, expected):
        assert _use_json(SimpleNamespace(config=config)) is expected
