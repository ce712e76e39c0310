"""
Tests for error payloads and structured log output.
"""

import json
import logging

from relaycore.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    UseCaseError,
    ValidationError,
    get_status_code,
)
from relaycore.observability import StructuredFormatter


class TestErrors:
    def test_status_codes(self):
        assert get_status_code(ErrorCode.VALIDATION_ERROR) == 400
        assert get_status_code(ErrorCode.NOT_FOUND) == 404
        assert get_status_code(ErrorCode.PACKAGE_INSUFFICIENT_UNITS) == 409
        assert get_status_code(ErrorCode.DATABASE_ERROR) == 500

    def test_not_found_message(self):
        error = NotFoundError("CustomerPackage", "abc")
        assert error.message == "CustomerPackage with ID 'abc' not found"
        assert error.code == ErrorCode.NOT_FOUND
        assert NotFoundError("CustomerPackage").message == "CustomerPackage not found"

    def test_to_dict(self):
        error = ValidationError("Invalid input", details=[{"field": "unitsUsed", "message": "too small"}])
        assert error.to_dict() == {
            "code": "VALIDATION_ERROR",
            "message": "Invalid input",
            "details": [{"field": "unitsUsed", "message": "too small"}],
        }
        assert ConflictError("busy").to_dict() == {"code": "CONFLICT", "message": "busy"}

    def test_hierarchy(self):
        assert isinstance(ConflictError("x", code=ErrorCode.LOYALTY_INSUFFICIENT_BALANCE), UseCaseError)


class TestStructuredFormatter:
    def test_json_line_with_extra_fields(self):
        record = logging.LogRecord(
            name="relaycore.outbox.dispatcher",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="outbox.mark_sent.skipped",
            args=(),
            exc_info=None,
        )
        record.worker_id = "W1"
        record.event_id = "evt-1"

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "WARNING"
        assert entry["message"] == "outbox.mark_sent.skipped"
        assert entry["worker_id"] == "W1"
        assert entry["event_id"] == "evt-1"
        assert entry["trace_id"] is None
