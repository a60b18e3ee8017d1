"""
Append-Only, Tamper-Evident Audit Trail (Hash-Chained).

Every mutation the engine performs -- session creation, steering actions,
flow assignment, escalation creation and updates, metric refreshes and
health checks -- is recorded as a structured audit entry.  Entries are
linked via a SHA-256 hash chain: if any entry is modified after the fact,
``verify_chain()`` detects the inconsistency.

**Scope note:**  The trail lives in process memory like the rest of the
engine.  The hash chain provides structural tamper evidence for review; a
deployment that needs durable guarantees should ship entries to WORM or
object-locked storage.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Audit event types
# ---------------------------------------------------------------------------

class AuditEventType(str, enum.Enum):
    """Enumeration of all auditable engine events."""

    # Sessions
    SESSION_CREATED = "SESSION_CREATED"
    ACTION_APPLIED = "ACTION_APPLIED"
    FLOW_ASSIGNED = "FLOW_ASSIGNED"
    METRICS_REFRESHED = "METRICS_REFRESHED"

    # Escalations
    ESCALATION_CREATED = "ESCALATION_CREATED"
    ESCALATION_UPDATED = "ESCALATION_UPDATED"

    # Collaborators
    HEALTH_CHECKED = "HEALTH_CHECKED"


# ---------------------------------------------------------------------------
# Audit entry model
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """A single audit entry: who did what, to which record, and when."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: str = Field(
        ...,
        description="Clinician id, or SYSTEM for engine-initiated events.",
    )
    event_type: AuditEventType
    target_entity: str = Field(
        default="",
        description="Identifier of the affected session or escalation.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic byte representation for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "event_type": self.event_type.value,
            "target_entity": self.target_entity,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# Identifier redaction
# ---------------------------------------------------------------------------

_CONTACT_PATTERNS: dict[str, re.Pattern] = {
    "phone": re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
}

# Keys whose values identify a patient and are fully redacted on export.
_PATIENT_KEYS = {"patient_id", "patient_name", "name", "phone", "email", "address", "dob"}


def redact_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Replace patient identifiers and contact-like strings with markers.

    Applied to every entry before ``export_for_review`` hands it out.
    """
    redacted: dict[str, Any] = {}
    for key, value in metadata.items():
        if key.lower() in _PATIENT_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, str):
            for pattern_name, pattern in _CONTACT_PATTERNS.items():
                value = pattern.sub(f"[REDACTED-{pattern_name.upper()}]", value)
            redacted[key] = value
        elif isinstance(value, dict):
            redacted[key] = redact_metadata(value)
        else:
            redacted[key] = value
    return redacted


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only audit trail with SHA-256 hash chaining.

    There are no update or delete methods.  ``record`` and ``append`` are
    serialized so concurrent request handlers build a single linear chain.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Link ``entry`` to the chain tail and append it."""
        with self._lock:
            entry.previous_hash = self._hashes[-1] if self._hashes else ""
            self._entries.append(entry)
            self._hashes.append(entry.compute_hash())
        return entry

    def record(
        self,
        event_type: AuditEventType,
        target_entity: str,
        actor_id: str = "SYSTEM",
        **metadata: Any,
    ) -> AuditEntry:
        """Shorthand for building and appending an entry."""
        return self.append(AuditEntry(
            actor_id=actor_id,
            event_type=event_type,
            target_entity=target_entity,
            metadata=metadata,
        ))

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)`` -- ``broken_at`` is the index of the first
            broken link, or None when the chain is intact.
        """
        with self._lock:
            entries = list(self._entries)
            hashes = list(self._hashes)

        for i, entry in enumerate(entries):
            if i == 0:
                if entry.previous_hash != "":
                    return (False, 0)
            elif entry.previous_hash != entries[i - 1].compute_hash():
                return (False, i)
            if hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        target_entity: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        actor_id: Optional[str] = None,
    ) -> list[AuditEntry]:
        """Return copies of matching entries in chain order."""
        with self._lock:
            entries = list(self._entries)
        return [
            entry.model_copy(deep=True)
            for entry in entries
            if (target_entity is None or entry.target_entity == target_entity)
            and (event_type is None or entry.event_type == event_type)
            and (actor_id is None or entry.actor_id == actor_id)
        ]

    def export_for_review(self, target_entity: Optional[str] = None) -> dict[str, Any]:
        """JSON-serializable export bundle with redacted metadata."""
        entries = []
        for entry in self.query(target_entity=target_entity):
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_metadata(entry.metadata)
            entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()
        return {
            "export_metadata": {
                "target_entity": target_entity,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
