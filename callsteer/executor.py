"""
Action Executor -- Applies Clinician Steering Actions to Live Sessions.

One call to ``apply()`` validates an action descriptor, then, under the
target session's lock, checks the state-machine transition, appends the
action to the session's log, applies its status change and metric deltas,
advances call duration and rebuilds the risk indicators.  The result is
committed in a single write, so callers never observe a partially applied
action, and a rejected action leaves no trace in the log.

**Effects** (deltas come from the policy's ``ActionEffects``; every metric
is clamped to its declared range afterwards):

* ``pause`` / ``resume`` / ``end_call`` -- status change only.
* ``prompt`` -- cooperation up.
* ``redirect`` -- stress down.
* ``inject_question`` -- cooperation and voice quality up.
* ``escalate`` -- stress up, "Manual Escalation" label, and an
  ``EmergencyEscalation`` filed with the Escalation Engine when one is
  wired in.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from callsteer.audit import AuditEventType, AuditLog
from callsteer.escalation import EscalationEngine
from callsteer.exceptions import InvalidActionError
from callsteer.logging import get_logger
from callsteer.metrics import apply_deltas, with_risk_indicators
from callsteer.models import (
    PAYLOAD_MODELS,
    ActionType,
    EmergencyEscalation,
    EscalatePayload,
    SessionStatus,
    SteeringAction,
    SteeringSession,
    utcnow,
)
from callsteer.sessions import SessionStore, is_manually_escalated, next_status

log = get_logger(__name__)


class ActionResult:
    """Outcome of applying one action: the updated session and the action.

    ``escalation`` is set when an ``escalate`` action filed an escalation.
    """

    def __init__(
        self,
        session: SteeringSession,
        action: SteeringAction,
        escalation: Optional[EmergencyEscalation] = None,
    ) -> None:
        self.session = session
        self.action = action
        self.escalation = escalation

    def __repr__(self) -> str:
        return (
            f"ActionResult(session={self.session.id}, action={self.action.type.value}, "
            f"status={self.session.status.value})"
        )


def build_action(descriptor: Mapping[str, Any], clock: Callable[[], datetime] = utcnow) -> SteeringAction:
    """Validate a raw action descriptor and build an immutable action.

    The descriptor needs ``type`` and ``description``; ``payload``, ``id``
    and ``timestamp`` are optional.  The payload is validated against the
    shape registered for the action type, and a caller-supplied timestamp
    must carry a UTC offset.

    Raises:
        InvalidActionError: If the descriptor is malformed.
    """
    if not isinstance(descriptor, Mapping):
        raise InvalidActionError("Invalid action structure: expected an object")

    raw_type = descriptor.get("type")
    description = descriptor.get("description")
    if not raw_type or not isinstance(description, str) or not description.strip():
        raise InvalidActionError("Invalid action structure: missing type or description")

    try:
        action_type = ActionType(raw_type)
    except ValueError:
        raise InvalidActionError(
            f"Unknown action type '{raw_type}'. "
            f"Must be one of: {', '.join(a.value for a in ActionType)}"
        ) from None

    payload_model = PAYLOAD_MODELS[action_type]
    raw_payload = descriptor.get("payload")
    try:
        if raw_payload is None or isinstance(raw_payload, payload_model):
            payload = raw_payload
        else:
            payload = payload_model.model_validate(raw_payload)
    except ValidationError as exc:
        raise InvalidActionError(
            f"Invalid payload for '{action_type.value}' action: {exc.errors()[0]['msg']}"
        ) from None

    fields: dict[str, Any] = {
        "type": action_type,
        "description": description,
        "payload": payload,
        "timestamp": descriptor.get("timestamp") or clock(),
    }
    if descriptor.get("id"):
        fields["id"] = descriptor["id"]
    try:
        return SteeringAction(**fields)
    except ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "action"
        raise InvalidActionError(f"Invalid {field} for '{action_type.value}' action: {error['msg']}") from None


class ActionExecutor:
    """Applies steering actions to sessions held by a ``SessionStore``.

    Args:
        store: The session store (supplies policy and metrics source).
        escalation_engine: Receives an escalation for every ``escalate``
            action; when None, escalate only affects the session.
        audit_log: Optional audit trail.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: SessionStore,
        escalation_engine: Optional[EscalationEngine] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._escalations = escalation_engine
        self._audit_log = audit_log
        self._clock = clock

    def apply(
        self,
        session_id: str,
        descriptor: Mapping[str, Any],
        actor_id: Optional[str] = None,
    ) -> ActionResult:
        """Validate and apply one action to one session.

        Raises:
            InvalidActionError: Malformed descriptor or duplicate action id.
            SessionNotFoundError: Unknown session id.
            InvalidTransitionError: Action not allowed in the current status.
        """
        action = build_action(descriptor, self._clock)
        policy = self._store.policy
        source = self._store.metrics_source

        def _apply(session: SteeringSession) -> SteeringSession:
            new_status = next_status(session.status, action.type)
            if any(existing.id == action.id for existing in session.actions):
                raise InvalidActionError(f"Action {action.id} already recorded for session {session.id}")

            metrics = apply_deltas(
                session.real_time_metrics,
                policy.action_effects.deltas_for(action.type),
                policy.metric_bounds,
                elapsed=source.elapsed_seconds(),
            )
            session.actions.append(action)
            session.status = new_status
            if new_status == SessionStatus.ENDED:
                session.end_time = self._clock()
            session.real_time_metrics = with_risk_indicators(
                metrics, policy, manually_escalated=is_manually_escalated(session)
            )
            return session

        session = self._store.update(session_id, _apply)
        actor = actor_id or session.clinician_id

        log.info(
            "action_applied",
            session_id=session_id,
            action_id=action.id,
            action_type=action.type.value,
            status=session.status.value,
            risk_indicators=session.real_time_metrics.risk_indicators,
        )
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.ACTION_APPLIED,
                target_entity=session_id,
                actor_id=actor,
                action_id=action.id,
                action_type=action.type.value,
                new_status=session.status.value,
            )

        escalation = None
        if action.type == ActionType.ESCALATE and self._escalations is not None:
            payload = action.payload if isinstance(action.payload, EscalatePayload) else EscalatePayload()
            escalation = self._escalations.create_escalation(
                severity=payload.severity,
                reason=action.description,
                action=payload.escalation_action,
                session_id=session_id,
                notes=payload.notes,
                actor_id=actor,
            )

        return ActionResult(session=session, action=action, escalation=escalation)
