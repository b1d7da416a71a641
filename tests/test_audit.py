"""Tests for tamper-evident audit trail behavior."""

import json

import pytest

from tollgate.audit import AuditTrail, EventType
from tollgate.errors import AuditIntegrityError


def test_audit_hash_chain_detects_tampering(tmp_path):
    trail = AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secret" / "audit_hmac.key",
    )
    trail.log(EventType.MANDATE_CREATED, subject="m-1", success=True)
    trail.log(EventType.ACTION_EXECUTED, subject="m-1", amount=5 * 10 ** 17)

    lines = (tmp_path / "audit.jsonl").read_text().splitlines()
    second = json.loads(lines[1])
    second["amount"] = str(10 ** 21)
    lines[1] = json.dumps(second, separators=(",", ":"))
    (tmp_path / "audit.jsonl").write_text("\n".join(lines) + "\n")

    with pytest.raises(AuditIntegrityError, match="line 2: event hash mismatch") as exc_info:
        trail.read_events()
    assert exc_info.value.line_number == 2


def test_dropped_line_breaks_chain(tmp_path, monkeypatch):
    monkeypatch.setenv("TOLLGATE_AUDIT_HMAC_KEY", "test-key")
    path = tmp_path / "audit.jsonl"
    trail = AuditTrail(path=path)
    for subject in ("m-1", "m-2", "m-3"):
        trail.log(EventType.MANDATE_CREATED, subject=subject)
    assert trail.verify() == 3

    lines = path.read_text().splitlines()
    path.write_text("\n".join([lines[0], lines[2]]) + "\n")
    with pytest.raises(AuditIntegrityError, match="previous hash mismatch"):
        trail.verify()
    with pytest.raises(AuditIntegrityError):
        trail.summary()


def test_key_file_is_created_once(tmp_path, monkeypatch):
    monkeypatch.delenv("TOLLGATE_AUDIT_HMAC_KEY", raising=False)
    key_path = tmp_path / "secret" / "audit_hmac.key"
    AuditTrail(path=tmp_path / "audit.jsonl", key_path=key_path).log(EventType.MANDATE_REVOKED)
    key = key_path.read_bytes()

    reopened = AuditTrail(path=tmp_path / "audit.jsonl", key_path=key_path)
    assert key_path.read_bytes() == key
    assert len(reopened.read_events()) == 1


def test_env_key_skips_key_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TOLLGATE_AUDIT_HMAC_KEY", "from-env")
    key_path = tmp_path / "secret" / "audit_hmac.key"
    trail = AuditTrail(path=tmp_path / "audit.jsonl", key_path=key_path)
    trail.log(EventType.POLICY_CHANGED, subject="p-1")
    assert not key_path.exists()


def test_filters_and_summary(tmp_path, monkeypatch):
    monkeypatch.setenv("TOLLGATE_AUDIT_HMAC_KEY", "test-key")
    trail = AuditTrail(path=tmp_path / "audit.jsonl")
    trail.log(EventType.MANDATE_CREATED, subject="m-1")
    trail.log(EventType.ACTION_DENIED, subject="m-1", success=False, reason="Rate limit exceeded")
    trail.log(EventType.MANDATE_CREATED, subject="m-2")

    assert [e.event_type for e in trail.read_events(subject="m-1")] == [
        "mandate_created",
        "action_denied",
    ]
    assert len(trail.read_events(event_type=EventType.MANDATE_CREATED)) == 2
    assert len(trail.read_events(limit=1)) == 1

    summary = trail.summary(subject="m-1")
    assert summary["total_events"] == 2
    assert summary["failures"] == 1
    assert summary["by_type"] == {"mandate_created": 1, "action_denied": 1}


def test_chain_continues_across_instances(tmp_path, monkeypatch):
    monkeypatch.setenv("TOLLGATE_AUDIT_HMAC_KEY", "test-key")
    path = tmp_path / "audit.jsonl"
    AuditTrail(path=path).log(EventType.BLACKLIST_ADDED, subject="0xabc")
    AuditTrail(path=path).log(EventType.BLACKLIST_REMOVED, subject="0xabc")
    assert len(AuditTrail(path=path).read_events()) == 2
