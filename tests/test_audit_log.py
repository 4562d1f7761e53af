import json

import pytest

from agentlink_gateway import audit_log
from agentlink_gateway.audit_log import AuditBuffer


def test_buffer_is_newest_first():
    buf = AuditBuffer(capacity=5)
    buf.record(audit_log.BLOCK, "Anonymous", "first")
    buf.record(audit_log.PAID, "Agent", "second")

    snap = buf.snapshot()
    assert [e["message"] for e in snap] == ["second", "first"]
    assert set(snap[0]) == {"time", "type", "agent", "message"}


def test_capacity_evicts_oldest():
    buf = AuditBuffer(capacity=50)
    for i in range(60):
        buf.record(audit_log.DATA, "Market", f"event {i}")

    snap = buf.snapshot()
    assert len(buf) == 50
    assert snap[0]["message"] == "event 59"
    assert snap[-1]["message"] == "event 10"


def test_snapshot_is_a_copy():
    buf = AuditBuffer(capacity=3)
    buf.record(audit_log.AI, "Consensus", "HOLD")
    snap = buf.snapshot()
    snap.clear()
    assert len(buf.snapshot()) == 1


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        AuditBuffer(capacity=0)


def test_mirror_chain_verifies(tmp_path):
    path = tmp_path / "audit.jsonl"
    buf = AuditBuffer(capacity=2, mirror_path=str(path))
    for i in range(4):
        buf.record(audit_log.VERIFY, "CLI", f"Checking {i}")

    # The mirror keeps everything even though memory holds only two.
    assert len(buf) == 2
    ok, reason, count = AuditBuffer.verify_file(str(path))
    assert (ok, reason, count) == (True, "OK", 4)


def test_mirror_chain_resumes_after_restart(tmp_path):
    path = tmp_path / "audit.jsonl"
    AuditBuffer(mirror_path=str(path)).record(audit_log.BLOCK, "Anonymous", "Sending 402 Invoice")
    AuditBuffer(mirror_path=str(path)).record(audit_log.PAID, "Agent", "Verified")

    assert AuditBuffer.verify_file(str(path)) == (True, "OK", 2)


def test_edited_mirror_record_is_detected(tmp_path):
    path = tmp_path / "audit.jsonl"
    buf = AuditBuffer(mirror_path=str(path))
    buf.record(audit_log.ERROR, "System", "Payment verification failed")
    buf.record(audit_log.PAID, "Agent", "Verified")

    lines = path.read_text(encoding="utf-8").splitlines()
    rec = json.loads(lines[0])
    rec["event"]["message"] = "Verified"
    lines[0] = json.dumps(rec, sort_keys=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    ok, reason, count = AuditBuffer.verify_file(str(path))
    assert ok is False
    assert reason == "EVENT_HASH_MISMATCH"
    assert count == 1


def test_dropped_mirror_record_breaks_chain(tmp_path):
    path = tmp_path / "audit.jsonl"
    buf = AuditBuffer(mirror_path=str(path))
    for i in range(3):
        buf.record(audit_log.DATA, "Market", f"{i}")

    lines = path.read_text(encoding="utf-8").splitlines()
    path.write_text("\n".join([lines[0], lines[2]]) + "\n", encoding="utf-8")

    assert AuditBuffer.verify_file(str(path))[:2] == (False, "CHAIN_BROKEN")


def test_missing_mirror_file_verifies_trivially(tmp_path):
    assert AuditBuffer.verify_file(str(tmp_path / "absent.jsonl")) == (True, "NO_FILE", 0)


def test_unwritable_mirror_keeps_event_in_memory(tmp_path, caplog):
    # A directory cannot be opened for appending.
    buf = AuditBuffer(capacity=5, mirror_path=str(tmp_path))

    event = buf.record(audit_log.PAID, "Agent", "Verified")

    assert event.message == "Verified"
    assert buf.snapshot()[0]["message"] == "Verified"
    assert "Failed to append audit event" in caplog.text
