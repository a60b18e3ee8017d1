"""
Emergency Escalation Engine.

Escalations are standalone emergency records with a lifecycle independent
of steering sessions.  A clinician can file one directly from the
dashboard, or the Action Executor files one when an ``escalate`` action is
applied to a live call; either way the record may carry the id of the
session it concerns.

**Lifecycle:**  an escalation is created unresolved and is normally closed
once via ``resolve()``.  The update is partial: callers may attach notes
without resolving.  Re-opening a resolved escalation is permitted by the
API but is logged as a warning because normal flow never does it.

**Immediate actions:**  on creation the engine derives, from a fixed
lookup table, the list of follow-up actions the care team is expected to
take for the ``(severity, action)`` pair.  The list is informational and
used for audit and display.  The engine itself never pages, dials or
dispatches; notification belongs to the outer integration layer.

**Pending queue ordering:**  unresolved escalations are listed by severity
(``critical > high > medium > low``), ties broken newest first.

DISCLAIMER: This engine records and orders escalations for clinician
review.  It does not contact emergency services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Union

from callsteer.audit import AuditEventType, AuditLog
from callsteer.exceptions import (
    EscalationNotFoundError,
    InvalidActionError,
    InvalidSeverityError,
    MissingFieldError,
)
from callsteer.logging import get_logger
from callsteer.models import EmergencyEscalation, EscalationAction, Severity, utcnow
from callsteer.repository import InMemoryRepository, Repository

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Immediate-action lookup
# ---------------------------------------------------------------------------

_SEVERITY_ACTIONS: dict[Severity, list[str]] = {
    Severity.CRITICAL: [
        "Emergency services notified",
        "On-call physician paged",
        "Patient emergency contact called",
    ],
    Severity.HIGH: [
        "Clinical supervisor notified",
        "Immediate callback scheduled",
        "Patient file flagged for urgent review",
    ],
    Severity.MEDIUM: [
        "Clinical alert sent to care team",
        "Follow-up appointment scheduled",
    ],
    Severity.LOW: [
        "Case note added to patient record",
        "Routine follow-up scheduled",
    ],
}

_RESPONSE_ACTIONS: dict[EscalationAction, list[str]] = {
    EscalationAction.EMERGENCY_SERVICES: [
        "911 dispatch initiated",
        "EMS en route notification sent",
    ],
    EscalationAction.HUMAN_TAKEOVER: [
        "Call transferred to clinician",
        "AI agent paused",
    ],
    EscalationAction.CLINICAL_ALERT: [
        "Alert sent to clinical dashboard",
        "SMS notification sent to care team",
    ],
    EscalationAction.IMMEDIATE_CALLBACK: [
        "Priority callback queue updated",
        "Next available clinician assigned",
    ],
}


def immediate_actions_for(severity: Severity, action: EscalationAction) -> list[str]:
    """Severity-driven actions followed by response-driven actions."""
    return list(_SEVERITY_ACTIONS[severity]) + list(_RESPONSE_ACTIONS[action])


def parse_severity(value: Union[str, Severity]) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        raise InvalidSeverityError(
            f"Invalid severity level '{value}'. "
            f"Must be one of: {', '.join(s.value for s in Severity)}"
        ) from None


def parse_escalation_action(value: Union[str, EscalationAction]) -> EscalationAction:
    try:
        return EscalationAction(value)
    except ValueError:
        raise InvalidActionError(
            f"Invalid action type '{value}'. "
            f"Must be one of: {', '.join(a.value for a in EscalationAction)}"
        ) from None


# ---------------------------------------------------------------------------
# Escalation engine
# ---------------------------------------------------------------------------

class EscalationEngine:
    """Creates, lists and resolves emergency escalations.

    Args:
        repository: Backing keyed store; in-memory by default.
        audit_log: Optional audit trail for escalation events.
        clock: Returns the current UTC time (stamped on new records).
    """

    def __init__(
        self,
        repository: Optional[Repository[EmergencyEscalation]] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo: Repository[EmergencyEscalation] = repository or InMemoryRepository()
        self._audit_log = audit_log
        self._clock = clock

    def create_escalation(
        self,
        severity: Union[str, Severity, None],
        reason: Optional[str],
        action: Union[str, EscalationAction, None],
        session_id: Optional[str] = None,
        notes: Optional[str] = None,
        actor_id: str = "SYSTEM",
    ) -> EmergencyEscalation:
        """File a new escalation.

        Args:
            severity: One of ``low``, ``medium``, ``high``, ``critical``.
            reason: Free-text reason; must not be blank.
            action: One of the ``EscalationAction`` values.
            session_id: Optional steering session the escalation concerns.
            notes: Optional clinician notes.
            actor_id: Who filed the escalation (for the audit trail).

        Returns:
            The stored escalation, including its ``immediate_actions``.

        Raises:
            MissingFieldError: If severity, reason or action is absent.
            InvalidSeverityError: If severity is not a known level.
            InvalidActionError: If action is not a known response.
        """
        missing = [
            name
            for name, value in (("severity", severity), ("reason", reason), ("action", action))
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise MissingFieldError(f"Missing required fields: {', '.join(missing)}")

        parsed_severity = parse_severity(severity)
        parsed_action = parse_escalation_action(action)

        escalation = EmergencyEscalation(
            severity=parsed_severity,
            reason=reason,
            action=parsed_action,
            timestamp=self._clock(),
            notes=notes,
            session_id=session_id,
            immediate_actions=immediate_actions_for(parsed_severity, parsed_action),
        )
        self._repo.put(escalation.id, escalation)

        log.warning(
            "escalation_created",
            escalation_id=escalation.id,
            severity=parsed_severity.value,
            action=parsed_action.value,
            session_id=session_id,
            immediate_actions=escalation.immediate_actions,
        )
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.ESCALATION_CREATED,
                target_entity=escalation.id,
                actor_id=actor_id,
                severity=parsed_severity.value,
                action=parsed_action.value,
                session_id=session_id,
                immediate_actions=escalation.immediate_actions,
            )
        return escalation

    def get_escalation(self, escalation_id: str) -> EmergencyEscalation:
        escalation = self._repo.get(escalation_id)
        if escalation is None:
            raise EscalationNotFoundError(f"Escalation {escalation_id} not found")
        return escalation

    def list_escalations(self) -> list[EmergencyEscalation]:
        """All escalations in creation order."""
        return self._repo.list()

    def list_pending(self) -> list[EmergencyEscalation]:
        """Unresolved escalations, most severe first, then newest first."""
        indexed = [
            (position, e)
            for position, e in enumerate(self._repo.list())
            if not e.resolved
        ]
        indexed.sort(
            key=lambda pair: (pair[1].severity.rank, pair[1].timestamp, pair[0]),
            reverse=True,
        )
        return [e for _, e in indexed]

    def resolve(
        self,
        escalation_id: str,
        resolved: Optional[bool] = None,
        notes: Optional[str] = None,
        actor_id: str = "SYSTEM",
    ) -> EmergencyEscalation:
        """Partially update an escalation's ``resolved`` flag and notes.

        Fields left as ``None`` are unchanged.

        Raises:
            EscalationNotFoundError: If the id does not resolve.
        """
        with self._repo.lock(escalation_id):
            escalation = self.get_escalation(escalation_id)
            was_resolved = escalation.resolved

            if resolved is not None:
                escalation.resolved = resolved
            if notes is not None:
                escalation.notes = notes
            self._repo.put(escalation_id, escalation)

        if was_resolved and resolved is False:
            log.warning("escalation_reopened", escalation_id=escalation_id)
        log.info(
            "escalation_updated",
            escalation_id=escalation_id,
            resolved=escalation.resolved,
        )
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.ESCALATION_UPDATED,
                target_entity=escalation_id,
                actor_id=actor_id,
                resolved=escalation.resolved,
                notes=escalation.notes,
            )
        return escalation

    def __len__(self) -> int:
        return len(self._repo.list())
