"""Unit tests for logging, request correlation and health reporting"""

import json
import logging
from types import SimpleNamespace

import pytest

from partmatch.observability.health import (
    ComponentHealth,
    HealthStatus,
    check_snapshot_cache,
    summarize,
)
from partmatch.observability.logging_config import JSONFormatter, RequestIDFilter
from partmatch.observability.request_id import accept_request_id, get_request_id, request_id_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("partmatch.test", logging.INFO, __file__, 1, "resolved %s", ("hex nut",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestId:
    def test_plain_caller_id_kept(self):
        assert accept_request_id("req-123") == "req-123"

    @pytest.mark.parametrize("value", [None, "", "a" * 129, "bad id", "line\nbreak", "trailing\n"])
    def test_unusable_caller_id_replaced(self, value):
        request_id = accept_request_id(value)
        assert request_id != value
        assert len(request_id) == 32

    def test_filter_stamps_context_id(self):
        token = request_id_var.set("req-9")
        try:
            record = _record()
            assert RequestIDFilter().filter(record)
            assert record.request_id == "req-9"
        finally:
            request_id_var.reset(token)
        assert get_request_id() == "-"


class TestJSONFormatter:
    def test_context_fields_included(self):
        line = json.loads(JSONFormatter().format(_record(request_id="req-1", org_id="org-a", status_code=200)))

        assert line["message"] == "resolved hex nut"
        assert line["request_id"] == "req-1"
        assert line["org_id"] == "org-a"
        assert line["status_code"] == 200
        assert "path" not in line


class TestHealth:
    def test_unreachable_database_is_unhealthy(self):
        overall, body = summarize({
            "database": ComponentHealth(HealthStatus.UNHEALTHY, "Database error: gone"),
            "training_cache": check_snapshot_cache("training", None),
        })

        assert overall == HealthStatus.UNHEALTHY
        assert body["status"] == "unhealthy"
        assert body["components"]["training_cache"]["status"] == "healthy"

    def test_cache_size_reported(self):
        component = check_snapshot_cache("catalog", SimpleNamespace(cached_org_count=3))
        assert component.status == HealthStatus.HEALTHY
        assert component.message == "3 catalog snapshot(s) cached"
