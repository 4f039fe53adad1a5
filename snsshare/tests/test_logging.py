"""Structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from snsshare.core.logging import MAX_FIELD_CHARS, JsonFormatter, PrettyFormatter, log_event
from snsshare.main import app


def _record(msg="billing.checkout.started", **fields):
    record = logging.LogRecord("snsshare", logging.INFO, __file__, 1, msg, None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def test_request_complete_carries_request_id_and_duration(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="snsshare"):
        response = client.get("/healthz", headers={"X-Request-Id": "rid-123"})
    assert response.headers["x-request-id"] == "rid-123"
    [record] = [r for r in caplog.records if r.getMessage() == "request.complete"]
    assert record.request_id == "rid-123"
    assert record.path == "/healthz"
    assert record.status == 200
    assert record.duration_ms >= 0


def test_log_event_truncates_free_form_values(caplog):
    with caplog.at_level(logging.WARNING, logger="snsshare"):
        log_event(
            "warning",
            "billing.reconcile.failed",
            user_id="U1",
            event_type="invoice.payment_failed",
            error_code="user_not_found",
            extra={"error": "x" * 2000, "attempt": 2},
        )
    [record] = caplog.records
    assert record.user_id == "U1"
    assert record.error_code == "user_not_found"
    assert record.attempt == 2
    assert record.error.endswith("...<truncated>")
    assert len(record.error) == MAX_FIELD_CHARS + len("...<truncated>")


def test_json_formatter_includes_extra_fields():
    line = JsonFormatter().format(_record(user_id="U1", request_id="rid-1", total_amount=12000))
    payload = json.loads(line)
    assert payload["event"] == "billing.checkout.started"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "U1"
    assert payload["total_amount"] == 12000


def test_pretty_formatter_skips_empty_fields():
    line = PrettyFormatter().format(_record(user_id="U1", tenant_id=None, request_id=None))
    assert "billing.checkout.started" in line
    assert "user_id=U1" in line
    assert "tenant_id" not in line
    assert "rid=" not in line
