"""
Session Store -- Live Call-Steering Sessions and Their State Machine.

The store owns the canonical set of steering sessions, keyed by session id.
All reads return copies and all writes go through ``update()``, which holds
the per-session lock for the whole read-modify-write cycle.  Two requests
touching the same session are therefore applied one after the other; a
failure inside the cycle leaves the stored session untouched.

**State machine:**

    active --pause--> paused --resume--> active
    active | paused --end_call--> ended            (terminal, sets end_time)
    active --prompt | redirect | inject_question | escalate--> active

Any other (status, action) pair is rejected with ``InvalidTransitionError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from callsteer.audit import AuditEventType, AuditLog
from callsteer.config import SteeringPolicy
from callsteer.exceptions import InvalidTransitionError, SessionNotFoundError
from callsteer.logging import get_logger
from callsteer.metrics import MetricsSource, clamp_metrics, with_risk_indicators
from callsteer.models import (
    ActionType,
    CallMetrics,
    ConversationFlow,
    SessionStatus,
    SteeringAction,
    SteeringSession,
    utcnow,
)
from callsteer.repository import InMemoryRepository, Repository

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

_TRANSITIONS: dict[tuple[SessionStatus, ActionType], SessionStatus] = {
    (SessionStatus.ACTIVE, ActionType.PAUSE): SessionStatus.PAUSED,
    (SessionStatus.PAUSED, ActionType.RESUME): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, ActionType.END_CALL): SessionStatus.ENDED,
    (SessionStatus.PAUSED, ActionType.END_CALL): SessionStatus.ENDED,
    (SessionStatus.ACTIVE, ActionType.PROMPT): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, ActionType.REDIRECT): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, ActionType.INJECT_QUESTION): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, ActionType.ESCALATE): SessionStatus.ACTIVE,
}

LIVE_STATUSES = frozenset({SessionStatus.ACTIVE, SessionStatus.PAUSED})


def next_status(current: SessionStatus, action_type: ActionType) -> SessionStatus:
    """Return the status ``action_type`` leads to from ``current``.

    Raises:
        InvalidTransitionError: If the action is not allowed from ``current``.
    """
    target = _TRANSITIONS.get((current, action_type))
    if target is None:
        allowed = sorted(a.value for (s, a) in _TRANSITIONS if s == current)
        raise InvalidTransitionError(
            f"Cannot apply '{action_type.value}' to a session that is {current.value}. "
            f"Allowed actions: {allowed}"
        )
    return target


def allowed_actions(status: SessionStatus) -> list[ActionType]:
    return [a for (s, a) in _TRANSITIONS if s == status]


def is_manually_escalated(session: SteeringSession) -> bool:
    return any(a.type == ActionType.ESCALATE for a in session.actions)


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------

class SessionStore:
    """Canonical in-process map of steering sessions.

    Args:
        policy: Steering policy (metric bounds and thresholds).
        metrics_source: Supplies baseline metrics for new sessions.
        repository: Backing keyed store; in-memory by default.
        audit_log: Optional audit trail for session events.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        policy: SteeringPolicy,
        metrics_source: MetricsSource,
        repository: Optional[Repository[SteeringSession]] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.policy = policy
        self.metrics_source = metrics_source
        self._repo: Repository[SteeringSession] = repository or InMemoryRepository()
        self._audit_log = audit_log
        self._clock = clock

    # -- creation and lookup --

    def create_session(
        self,
        call_id: str,
        patient_id: str,
        clinician_id: str,
        metrics: Optional[CallMetrics] = None,
        start_time: Optional[datetime] = None,
    ) -> SteeringSession:
        """Open a session for a call that has just connected.

        Always succeeds.  The session starts ``active`` with an empty action
        log and a baseline snapshot from the metrics source (or ``metrics``
        when given), clamped and with risk indicators derived.
        """
        baseline = metrics if metrics is not None else self.metrics_source.baseline()
        baseline = with_risk_indicators(clamp_metrics(baseline, self.policy.metric_bounds), self.policy)

        session = SteeringSession(
            call_id=call_id,
            patient_id=patient_id,
            clinician_id=clinician_id,
            start_time=start_time or self._clock(),
            real_time_metrics=baseline,
        )
        self._repo.put(session.id, session)

        log.info(
            "session_created",
            session_id=session.id,
            call_id=call_id,
            clinician_id=clinician_id,
        )
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.SESSION_CREATED,
                target_entity=session.id,
                actor_id=clinician_id,
                call_id=call_id,
                patient_id=patient_id,
            )
        return session

    def get_session(self, session_id: str) -> SteeringSession:
        """Raises ``SessionNotFoundError`` when the id does not resolve."""
        session = self._repo.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def list_sessions(self) -> list[SteeringSession]:
        return self._repo.list()

    def active_sessions(self) -> list[SteeringSession]:
        """Sessions that are still live (``active`` or ``paused``)."""
        return [s for s in self._repo.list() if s.status in LIVE_STATUSES]

    # -- actions --

    def list_actions(self, session_id: str) -> list[SteeringAction]:
        """Actions recorded for one session; empty for an unknown id."""
        session = self._repo.get(session_id)
        return list(session.actions) if session is not None else []

    def recent_actions(self, limit: Optional[int] = None) -> list[SteeringAction]:
        """Most recent actions across all sessions, newest first."""
        limit = limit if limit is not None else self.policy.recent_actions_limit
        actions = [a for s in self._repo.list() for a in s.actions]
        actions.sort(key=lambda a: a.timestamp, reverse=True)
        return actions[:limit]

    # -- mutation --

    def update(
        self,
        session_id: str,
        mutate: Callable[[SteeringSession], SteeringSession],
    ) -> SteeringSession:
        """Apply ``mutate`` to a copy of the session and commit the result.

        The session is re-read under its lock, so a session removed between
        the caller's request and this write is reported as not found.  If
        ``mutate`` raises, nothing is written.
        """
        with self._repo.lock(session_id):
            current = self._repo.get(session_id)
            if current is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            updated = mutate(current)
            self._repo.put(session_id, updated)
            return updated

    def set_conversation_flow(
        self,
        session_id: str,
        flow: ConversationFlow,
        actor_id: Optional[str] = None,
    ) -> SteeringSession:
        """Point the session at ``flow``, starting at its first step.

        Raises:
            SessionNotFoundError: Unknown session.
            InvalidTransitionError: Session has already ended.
        """

        def _assign(session: SteeringSession) -> SteeringSession:
            if session.status == SessionStatus.ENDED:
                raise InvalidTransitionError(
                    f"Cannot assign a conversation flow to ended session {session.id}"
                )
            session.current_flow = flow.model_copy(deep=True)
            session.current_step = flow.steps[0].id if flow.steps else None
            return session

        session = self.update(session_id, _assign)
        log.info("flow_assigned", session_id=session_id, flow_id=flow.id)
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.FLOW_ASSIGNED,
                target_entity=session_id,
                actor_id=actor_id or session.clinician_id,
                flow_id=flow.id,
                current_step=session.current_step,
            )
        return session

    def __len__(self) -> int:
        return len(self.list_sessions())
