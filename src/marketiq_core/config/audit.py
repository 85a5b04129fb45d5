"""Audit trail and version snapshot records for configuration changes."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any


def config_hash(payload: object) -> str:
    """Return the SHA-256 of ``payload`` serialized as canonical JSON."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AuditEntry:
    """One configuration mutation, recorded by content hash only."""

    timestamp_ms: int
    actor_id: str
    action: str
    before_hash: str
    after_hash: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp_ms,
            "actorId": self.actor_id,
            "action": self.action,
            "beforeHash": self.before_hash,
            "afterHash": self.after_hash,
            "meta": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: object) -> AuditEntry | None:
        if not isinstance(record, dict):
            return None
        ts = record.get("ts")
        meta = record.get("meta")
        return cls(
            timestamp_ms=ts if isinstance(ts, int) and not isinstance(ts, bool) else 0,
            actor_id=str(record.get("actorId") or ""),
            action=str(record.get("action") or ""),
            before_hash=str(record.get("beforeHash") or ""),
            after_hash=str(record.get("afterHash") or ""),
            metadata=meta if isinstance(meta, dict) else {},
        )


@dataclass(frozen=True)
class ConfigSnapshot:
    """A prior current config kept under its version key."""

    version_key: str
    captured_at_ms: int
    payload: dict[str, Any]

    def to_record(self) -> dict[str, Any]:
        return {
            "versionKey": self.version_key,
            "capturedAt": self.captured_at_ms,
            "payload": self.payload,
        }

    @classmethod
    def from_record(cls, version_key: str, record: object) -> ConfigSnapshot | None:
        """Decode a snapshot; bare config payloads from older writers are accepted."""
        if not isinstance(record, dict):
            return None
        payload = record.get("payload")
        if not isinstance(payload, dict):
            return cls(version_key=version_key, captured_at_ms=0, payload=record)
        captured = record.get("capturedAt")
        return cls(
            version_key=version_key,
            captured_at_ms=captured if isinstance(captured, int) and not isinstance(captured, bool) else 0,
            payload=payload,
        )
