"""Bounded audit trail for the AgentLink gateway.

`AuditBuffer` keeps the most recent events in memory (newest first) for the
`/logs` endpoint. It is owned by the gateway instance, not by the module.

Optionally every event is mirrored to a JSONL file where each record includes:
- prev_hash: SHA256 of the previous record (hex)
- event_hash: SHA256 of the canonical event JSON (hex)
- entry_hash: SHA256(prev_hash || event_hash || ts) (hex)

This makes after-the-fact edits to the mirror detectable. The in-memory buffer
is not hash-chained; it only exists for observability.

Mirror writes are synchronous and happen under the buffer lock, so the mirror
suits low-volume deployments. A failed write is logged and never propagates to
the caller.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

AUDIT_RECORD_VERSION = "AGENTLINK_AUDIT_V1"
GENESIS_HASH = "0" * 64

# Event types
BLOCK = "BLOCK"
VERIFY = "VERIFY"
PAID = "PAID"
ERROR = "ERROR"
DATA = "DATA"
AI = "AI"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _canonical(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _entry_hash(prev_hash: str, event_hash: str, ts: str) -> str:
    return _sha256_hex("|".join([prev_hash, event_hash, ts]).encode("utf-8"))


@dataclass(frozen=True)
class AuditEvent:
    time: str
    type: str
    agent: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class AuditBuffer:
    """Append-only ring buffer of recent audit events."""

    def __init__(self, capacity: int = 50, mirror_path: Optional[str] = None):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self._events: deque = deque(maxlen=self.capacity)
        self._lock = threading.Lock()
        self.mirror_path = str(mirror_path) if mirror_path else None
        self._last_hash = GENESIS_HASH

        if self.mirror_path:
            p = Path(self.mirror_path)
            p.parent.mkdir(parents=True, exist_ok=True)
            if p.exists() and p.stat().st_size > 0:
                try:
                    rec = json.loads(self._read_last_line(p))
                    self._last_hash = str(rec.get("entry_hash", GENESIS_HASH))
                except Exception:
                    # A corrupt tail restarts the chain; verify_file will flag it.
                    logger.warning("Audit mirror %s has an unreadable tail; restarting chain", self.mirror_path)
                    self._last_hash = GENESIS_HASH

    @staticmethod
    def _read_last_line(path: Path) -> str:
        with path.open("rb") as f:
            f.seek(0, 2)
            end = f.tell()
            if end == 0:
                return ""
            pos = max(0, end - 4096)
            f.seek(pos)
            lines = f.read(end - pos).splitlines()
            if not lines:
                return ""
            return lines[-1].decode("utf-8")

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event_type: str, agent: str, message: str, ts_utc: Optional[str] = None) -> AuditEvent:
        """Append an event; the oldest is evicted once capacity is reached."""
        event = AuditEvent(time=ts_utc or _now_iso(), type=str(event_type), agent=str(agent), message=str(message))
        with self._lock:
            self._events.appendleft(event)
            if self.mirror_path:
                try:
                    self._append_to_mirror(event)
                except OSError:
                    # The in-memory event stands; the chain resumes from the last written record.
                    logger.exception("Failed to append audit event to mirror %s", self.mirror_path)
        logger.info("[%s] %s: %s", event.type, event.agent, event.message)
        return event

    def _append_to_mirror(self, event: AuditEvent) -> None:
        body = event.to_dict()
        event_hash = _sha256_hex(_canonical(body).encode("utf-8"))
        entry_hash = _entry_hash(self._last_hash, event_hash, event.time)
        rec = {
            "version": AUDIT_RECORD_VERSION,
            "ts_utc": event.time,
            "prev_hash": self._last_hash,
            "event": body,
            "event_hash": event_hash,
            "entry_hash": entry_hash,
        }
        with open(self.mirror_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(rec, sort_keys=True) + "\n")
        self._last_hash = entry_hash

    def snapshot(self) -> List[Dict[str, str]]:
        """Return the buffered events, newest first."""
        with self._lock:
            return [e.to_dict() for e in self._events]

    @staticmethod
    def verify_file(path: str) -> Tuple[bool, str, int]:
        """Verify a JSONL mirror. Returns (ok, reason, count)."""
        p = Path(path)
        if not p.exists():
            return True, "NO_FILE", 0

        prev = GENESIS_HASH
        count = 0
        with p.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                count += 1
                try:
                    rec = json.loads(line)
                except ValueError:
                    return False, "PARSE_ERROR", count
                if rec.get("version") != AUDIT_RECORD_VERSION:
                    return False, f"BAD_VERSION:{rec.get('version')}", count
                if str(rec.get("prev_hash")) != prev:
                    return False, "CHAIN_BROKEN", count
                event = rec.get("event")
                if not isinstance(event, dict):
                    return False, "BAD_EVENT", count
                event_hash = _sha256_hex(_canonical(event).encode("utf-8"))
                if event_hash != str(rec.get("event_hash")):
                    return False, "EVENT_HASH_MISMATCH", count
                expected = _entry_hash(prev, event_hash, str(rec.get("ts_utc")))
                if expected != str(rec.get("entry_hash")):
                    return False, "ENTRY_HASH_MISMATCH", count
                prev = expected
        return True, "OK", count
