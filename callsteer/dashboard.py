"""
Dashboard Aggregator.

Read-only composition of the Session Store, the Escalation Engine and the
latest collaborator health snapshot into the single payload the clinician
dashboard polls.  The aggregator holds no state of its own.

It also exposes the dashboard's on-demand side effects: a batch metrics
refresh over all active calls (the simulation "tick"), a collaborator
health check, and creation of a demo session.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import Field

from callsteer.audit import AuditEventType, AuditLog
from callsteer.escalation import EscalationEngine
from callsteer.exceptions import SessionNotFoundError
from callsteer.health import AI_SPEECH, TELEPHONY, HealthMonitor
from callsteer.logging import get_logger
from callsteer.metrics import refresh_metrics
from callsteer.models import (
    CamelModel,
    EmergencyEscalation,
    ServiceHealth,
    ServiceStatus,
    SessionStatus,
    Severity,
    SteeringAction,
    SteeringSession,
    utcnow,
)
from callsteer.sessions import SessionStore, is_manually_escalated

log = get_logger(__name__)

DEMO_PATIENT_ID = "DEMO-PATIENT-001"
DEMO_CLINICIAN_ID = "clinician-001"


class SystemStatus(CamelModel):
    voice_service_status: ServiceStatus = ServiceStatus.UNKNOWN
    steering_service_status: ServiceStatus = ServiceStatus.UNKNOWN
    services: dict[str, ServiceStatus] = Field(default_factory=dict)
    last_health_check: Optional[datetime] = None


class DashboardSummary(CamelModel):
    active_sessions_count: int
    pending_escalations_count: int
    recent_actions_count: int
    critical_escalations: int
    high_risk_sessions: int


class SteeringDashboard(CamelModel):
    active_sessions: list[SteeringSession]
    pending_escalations: list[EmergencyEscalation]
    recent_actions: list[SteeringAction]
    system_status: SystemStatus
    summary: DashboardSummary


class DashboardAggregator:
    def __init__(
        self,
        store: SessionStore,
        escalations: EscalationEngine,
        health: HealthMonitor,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._escalations = escalations
        self._health = health
        self._audit_log = audit_log
        self._clock = clock

    def build_dashboard(self, limit: Optional[int] = None) -> SteeringDashboard:
        """Compose the dashboard payload.

        ``system_status`` reflects the last health check rather than probing
        on every read, so two reads with no mutation in between agree.
        """
        active = self._store.active_sessions()
        pending = self._escalations.list_pending()
        recent = self._store.recent_actions(limit)
        stress_high = self._store.policy.risk_thresholds.stress_high

        summary = DashboardSummary(
            active_sessions_count=len(active),
            pending_escalations_count=len(pending),
            recent_actions_count=len(recent),
            critical_escalations=sum(1 for e in pending if e.severity == Severity.CRITICAL),
            high_risk_sessions=sum(
                1
                for s in active
                if s.real_time_metrics.risk_indicators or s.real_time_metrics.stress_level > stress_high
            ),
        )
        snapshot = self._health.snapshot
        system_status = SystemStatus(
            voice_service_status=self._health.status_of(TELEPHONY),
            steering_service_status=self._health.status_of(AI_SPEECH),
            services={name: h.status for name, h in snapshot.items()},
            last_health_check=self._health.last_check,
        )
        return SteeringDashboard(
            active_sessions=active,
            pending_escalations=pending,
            recent_actions=recent,
            system_status=system_status,
            summary=summary,
        )

    def refresh_all(self) -> list[SteeringSession]:
        """Run one metrics tick over every ``active`` session.

        Paused calls are not progressing and are skipped, as are sessions
        that ended or disappeared between listing and update.
        """
        policy = self._store.policy
        source = self._store.metrics_source

        def _tick(session: SteeringSession) -> SteeringSession:
            if session.status != SessionStatus.ACTIVE:
                return session
            session.real_time_metrics = refresh_metrics(
                session.real_time_metrics,
                source,
                policy,
                manually_escalated=is_manually_escalated(session),
            )
            return session

        refreshed: list[SteeringSession] = []
        for candidate in self._store.list_sessions():
            if candidate.status != SessionStatus.ACTIVE:
                continue
            try:
                session = self._store.update(candidate.id, _tick)
            except SessionNotFoundError:
                log.warning("refresh_skipped_missing_session", session_id=candidate.id)
                continue
            if session.status == SessionStatus.ACTIVE:
                refreshed.append(session)

        log.info("metrics_refreshed", sessions=len(refreshed))
        if self._audit_log is not None:
            self._audit_log.record(
                AuditEventType.METRICS_REFRESHED,
                target_entity="system",
                session_ids=[s.id for s in refreshed],
            )
        return refreshed

    def health_check(self) -> dict[str, ServiceHealth]:
        return self._health.run()

    def create_demo_session(self) -> SteeringSession:
        """Create a session for the demo patient, already a few minutes in."""
        metrics = self._store.metrics_source.demo_baseline()
        now = self._clock()
        stamp = int(now.timestamp() * 1000)
        return self._store.create_session(
            call_id=f"demo-call-{stamp}",
            patient_id=DEMO_PATIENT_ID,
            clinician_id=DEMO_CLINICIAN_ID,
            metrics=metrics,
            start_time=now - timedelta(seconds=metrics.duration),
        )
