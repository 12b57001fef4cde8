"""
Logging configuration tests.

Tests cover:
  - JSON output carries the domain context fields
  - Request id / actor are stamped on records logged inside a request
  - Readable suffix
  - Re-configuring replaces only the app's own handler
"""
import json
import logging

from flask import g

from app.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    configure_logging,
)


def _record(msg="Approval approved", **extra):
    record = logging.LogRecord("app.services.approval_service", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_includes_context(self):
        out = json.loads(JSONFormatter().format(_record(solution_id=3, approval_id=8, actor="carol")))
        assert out["message"] == "Approval approved"
        assert out["level"] == "INFO"
        assert out["solution_id"] == 3
        assert out["approval_id"] == 8
        assert out["actor"] == "carol"
        assert "workflow_id" not in out

    def test_readable_suffix(self):
        line = ReadableFormatter(color=False).format(_record(request_id="abc123", solution_id=3))
        assert line.endswith("Approval approved [req=abc123 solution=3]")


class TestRequestContextFilter:
    def test_stamps_request_id_and_actor(self, app):
        with app.test_request_context("/api/v1/solutions", headers={"X-User": "alice"}):
            g.request_id = "req-1"
            record = _record()
            assert RequestContextFilter().filter(record) is True
        assert record.request_id == "req-1"
        assert record.actor == "alice"

    def test_explicit_actor_wins(self, app):
        with app.test_request_context("/", headers={"X-User": "alice"}):
            record = _record(actor="system")
            RequestContextFilter().filter(record)
        assert record.actor == "system"

    def test_outside_request_is_untouched(self):
        record = _record()
        RequestContextFilter().filter(record)
        assert getattr(record, "request_id", None) is None


class TestConfigureLogging:
    def test_reconfigure_keeps_single_handler_and_foreign_handlers(self, app):
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            configure_logging(app)
            configure_logging(app)
            ours = [h for h in root.handlers if h.get_name() == "approval-tracker"]
            assert len(ours) == 1
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)
