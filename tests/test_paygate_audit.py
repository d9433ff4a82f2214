# tests/test_paygate_audit.py
"""
Unit tests for the verification attempt log.
"""
import json

from app.paygate.audit import (
    AuditEventType,
    PaymentAuditLog,
    create_audit_event,
    generate_request_id,
)

from tests.conftest import OTHER_SUBJECT, SUBJECT

TX1 = "0x" + "11" * 32


class TestCreateAuditEvent:
    """Test event construction."""

    def test_event_structure(self):
        event = create_audit_event(
            AuditEventType.VERIFICATION_REJECTED,
            {"kind": "SenderMismatch"},
            subject=SUBJECT.upper(),
            request_id="abc12345",
        )

        assert event["event_type"] == "verification_rejected"
        assert event["request_id"] == "abc12345"
        assert event["subject"] == SUBJECT.lower()
        assert event["data"] == {"kind": "SenderMismatch"}
        assert "timestamp" in event

    def test_request_id_generated(self):
        event = create_audit_event(AuditEventType.PAYMENT_REQUIRED_SENT, {})
        assert len(event["request_id"]) == 8
        assert event["subject"] is None

    def test_request_ids_unique(self):
        assert generate_request_id() != generate_request_id()


class TestPaymentAuditLog:
    """Test writing and reading the JSON-lines log."""

    def test_writes_json_lines(self, tmp_path):
        path = tmp_path / "nested" / "audit.jsonl"
        log = PaymentAuditLog(str(path))

        log.log_verification_succeeded(SUBJECT, TX1, "model-details", "7", "grant-1", "0.0001")
        log.log_verification_rejected(SUBJECT, TX1, "model-details", "7", "AlreadyConsumed", "used")

        lines = path.read_text().strip().split("\n")
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == "verification_succeeded"
        assert first["data"]["grant_id"] == "grant-1"

    def test_disabled_writes_nothing(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        log = PaymentAuditLog(str(path), enabled=False)

        result = log.log_payment_required_sent(SUBJECT, "deposit", "1", "0.0002", "ETH", "0x0")

        assert result is None
        assert not path.exists()

    def test_returns_request_id(self, tmp_path):
        log = PaymentAuditLog(str(tmp_path / "audit.jsonl"))

        request_id = log.log_payment_required_sent(
            SUBJECT, "deposit", "1", "0.0002", "ETH", "0x0", request_id="req00001"
        )

        assert request_id == "req00001"

    def test_write_failure_returns_none(self, tmp_path):
        # The log path is a directory, so opening it for append fails
        log = PaymentAuditLog(str(tmp_path))

        assert log.log_verification_succeeded(SUBJECT, TX1, "deposit", "1", "g", "0.0002") is None

    def test_read_most_recent_first(self, tmp_path):
        log = PaymentAuditLog(str(tmp_path / "audit.jsonl"))
        log.log_verification_rejected(SUBJECT, TX1, "deposit", "1", "NotFound", "first")
        log.log_verification_rejected(SUBJECT, TX1, "deposit", "1", "NotFound", "second")

        events = log.read()

        assert [e["data"]["message"] for e in events] == ["second", "first"]

    def test_read_filters(self, tmp_path):
        log = PaymentAuditLog(str(tmp_path / "audit.jsonl"))
        log.log_verification_rejected(SUBJECT, TX1, "deposit", "1", "NotFound", "m")
        log.log_verification_succeeded(OTHER_SUBJECT, TX1, "deposit", "1", "g", "0.0002")

        assert len(log.read(event_type=AuditEventType.VERIFICATION_SUCCEEDED)) == 1
        assert len(log.read(subject=SUBJECT.upper().replace("0X", "0x"))) == 1
        assert len(log.read(max_entries=1)) == 1

    def test_read_skips_corrupt_lines(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        log = PaymentAuditLog(str(path))
        log.log_verification_rejected(SUBJECT, TX1, "deposit", "1", "NotFound", "m")
        with open(path, "a") as f:
            f.write("not json\n\n")

        assert len(log.read()) == 1

    def test_read_missing_file(self, tmp_path):
        assert PaymentAuditLog(str(tmp_path / "missing.jsonl")).read() == []
