"""
Audit trail for Tollgate authorization decisions.

Each line of the JSONL log carries an HMAC over the previous line's hash and
its own canonical payload. Every read walks the whole chain, so an edited,
dropped or reordered line raises AuditIntegrityError.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from collections import Counter
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from .errors import AuditIntegrityError
from .storage import append_durable_line, ensure_private_dir, ensure_private_file


DEFAULT_AUDIT_PATH = Path.home() / ".tollgate" / "audit.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".tollgate-secrets" / "audit_hmac.key"

_CHAIN_FIELDS = ("prev_hash", "event_hash")


class EventType(str, Enum):
    MANDATE_CREATED = "mandate_created"
    MANDATE_REVOKED = "mandate_revoked"
    MANDATE_EXPIRED = "mandate_expired"
    ACTION_EXECUTED = "action_executed"
    ACTION_DENIED = "action_denied"
    POLICY_DENIED = "policy_denied"
    POLICY_CHANGED = "policy_changed"
    BLACKLIST_ADDED = "blacklist_added"
    BLACKLIST_REMOVED = "blacklist_removed"
    TRANSACTION_BLOCKED = "transaction_blocked"


@dataclass
class AuditEvent:
    """One decision or state change.

    ``subject`` is the mandate id, policy id, address or transaction id the
    event is about; ``actor`` is the counterparty; ``amount`` is wei as a
    decimal string.
    """

    event_type: str
    timestamp: float
    subject: Optional[str] = None
    actor: Optional[str] = None
    amount: Optional[str] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(
            {k: v for k, v in asdict(self).items() if v is not None},
            separators=(",", ":"),
        )

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AuditEvent":
        return cls(**{k: v for k, v in record.items() if k in cls.__dataclass_fields__})


class AuditTrail:
    """Append-only audit log shared by the mandate, policy and risk providers.

    The HMAC key comes from ``TOLLGATE_AUDIT_HMAC_KEY`` when set, otherwise
    from ``key_path`` (generated on first use, owner-only).
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ):
        self.path = path or DEFAULT_AUDIT_PATH
        self.key_path = key_path or DEFAULT_AUDIT_KEY_PATH

        ensure_private_dir(self.path.parent)
        ensure_private_file(self.path)

        self._write_lock = threading.Lock()
        self._hmac_key = self._resolve_key()
        self._last_hash = self._tail_hash()

    def _resolve_key(self) -> bytes:
        from_env = os.getenv("TOLLGATE_AUDIT_HMAC_KEY")
        if from_env:
            return from_env.encode()

        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.key_path)
        stored = self.key_path.read_bytes().strip()
        if stored:
            return stored
        generated = secrets.token_hex(32).encode()
        self.key_path.write_bytes(generated)
        return generated

    def _tail_hash(self) -> str:
        tail = ""
        for _, record in self._records():
            tail = record.get("event_hash", "")
        return tail

    def _records(self) -> Iterator[tuple[int, dict[str, Any]]]:
        with open(self.path, "r") as f:
            for number, line in enumerate(f, start=1):
                if line.strip():
                    yield number, json.loads(line)

    def _digest(self, payload: dict[str, Any], prev_hash: str) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256
        ).hexdigest()

    def _verified(self) -> Iterator[dict[str, Any]]:
        expected_prev = ""
        for number, record in self._records():
            prev_hash = record.get("prev_hash") or ""
            if prev_hash != expected_prev:
                raise AuditIntegrityError(number, "previous hash mismatch")
            payload = {k: v for k, v in record.items() if k not in _CHAIN_FIELDS}
            event_hash = record.get("event_hash") or ""
            if not hmac.compare_digest(self._digest(payload, prev_hash), event_hash):
                raise AuditIntegrityError(number, "event hash mismatch")
            expected_prev = event_hash
            yield record

    def log(
        self,
        event_type: EventType,
        subject: Optional[str] = None,
        actor: Optional[str] = None,
        amount: Optional[int] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        fields = {
            "event_type": event_type.value,
            "timestamp": time.time(),
            "subject": subject,
            "actor": actor,
            "amount": None if amount is None else str(amount),
            "success": success,
            "reason": reason,
            "details": details,
        }
        payload = {k: v for k, v in fields.items() if v is not None}

        with self._write_lock:
            prev_hash = self._last_hash
            event = AuditEvent(
                **payload,
                prev_hash=prev_hash or None,
                event_hash=self._digest(payload, prev_hash),
            )
            append_durable_line(self.path, event.to_json())
            self._last_hash = event.event_hash
        return event

    def verify(self) -> int:
        """Walk the whole chain and return the number of events in it."""
        return sum(1 for _ in self._verified())

    def read_events(
        self,
        subject: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Return the newest ``limit`` matching events, oldest first."""
        if limit <= 0:
            return []
        wanted_type = event_type.value if event_type else None
        matches = [
            AuditEvent.from_record(record)
            for record in self._verified()
            if (subject is None or record.get("subject") == subject)
            and (wanted_type is None or record.get("event_type") == wanted_type)
        ]
        return matches[-limit:]

    def summary(self, subject: Optional[str] = None) -> dict[str, Any]:
        """Counts by event type and failures over the whole verified chain."""
        by_type: Counter = Counter()
        failures = 0
        last: Optional[dict[str, Any]] = None
        for record in self._verified():
            if subject is not None and record.get("subject") != subject:
                continue
            by_type[record["event_type"]] += 1
            failures += not record.get("success", True)
            last = record
        return {
            "total_events": sum(by_type.values()),
            "by_type": dict(by_type),
            "failures": failures,
            "last_event": AuditEvent.from_record(last).to_json() if last else None,
        }
