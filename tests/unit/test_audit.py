"""Unit tests for the signed audit trail."""
import json

import pytest

from backend.core import audit
from backend.core.audit import AuditLog, current_operator, verify_audit_log
from backend.core.models import UserDetails
from backend.core.representations import UserRepresentation


@pytest.fixture
def audit_log(tmp_path):
    return AuditLog(tmp_path / "audit", "test-signing-key-for-audit-trail")


def _events(log):
    return [json.loads(line) for line in log.file.read_text().splitlines() if line.strip()]


def test_record_creates_private_file(audit_log):
    assert not audit_log.file.exists()
    audit_log.record("create", "Role", "AUDITOR", operator="admin@example.com")
    assert audit_log.file.exists()
    assert audit_log.file.stat().st_mode & 0o777 == 0o600
    assert audit_log.directory.stat().st_mode & 0o777 == 0o700


def test_record_event_fields(audit_log):
    audit_log.record("delete", "User", 7, operator="admin@example.com", success=False)
    event = _events(audit_log)[0]
    assert event["action"] == "delete"
    assert event["resource_type"] == "User"
    assert event["resource_id"] == "7"
    assert event["operator"] == "admin@example.com"
    assert event["success"] is False
    assert event["representation"] is None
    assert "timestamp" in event
    assert "signature" in event


def test_representation_is_unfiltered_and_redacted(audit_log):
    representation = UserRepresentation(id=1, email="ada@example.com", first_name="Ada", last_name="Lovelace", phone="+1 555")
    audit_log.record("create", "User", 1, representation={"user": representation, "password": "Secret123", "token": None})
    event = _events(audit_log)[0]
    assert event["representation"]["user"]["phone"] == "+1 555"
    assert event["representation"]["password"] == "[redacted]"
    assert event["representation"]["token"] is None


def test_verify_counts_valid_signatures(audit_log):
    audit_log.record("create", "Role", "AUDITOR")
    audit_log.record("delete", "Role", "AUDITOR")
    assert audit_log.verify() == (2, 2)
    assert verify_audit_log(audit_log.directory, "other-key") == (2, 0)


def test_tampered_event_fails_verification(audit_log):
    audit_log.record("create", "Role", "AUDITOR", operator="admin@example.com")
    event = _events(audit_log)[0]
    event["operator"] = "mallory@example.com"
    audit_log.file.write_text(json.dumps(event) + "\n")
    assert audit_log.verify() == (1, 0)


def test_unsigned_without_key(tmp_path):
    log = AuditLog(tmp_path / "audit", "")
    event = log.record("login", "User", "ada@example.com")
    assert "signature" not in event
    assert log.verify() == (1, 0)


def test_verify_without_file(audit_log):
    assert audit_log.verify() == (0, 0)


def test_safe_record_reports_failure(audit_log, monkeypatch):
    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(audit.AuditLog, "record", _fail)
    assert audit_log.safe_record("create", "Role", "AUDITOR") is False


def test_current_operator():
    assert current_operator(None) == "system"
    assert current_operator(UserDetails(id=1, username="ada@example.com")) == "ada@example.com"
