"""Service container and dependency injection for API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Callable, Iterable, Optional

from fastapi import Depends, Request

from callsteer.audit import AuditLog
from callsteer.config import Settings
from callsteer.dashboard import DashboardAggregator
from callsteer.escalation import EscalationEngine
from callsteer.executor import ActionExecutor
from callsteer.flows import FlowCatalog
from callsteer.health import CollaboratorProbe, HealthMonitor, default_probes
from callsteer.metrics import MetricsSource, RandomMetricsSource
from callsteer.models import SteeringSession, utcnow
from callsteer.repository import InMemoryRepository
from callsteer.sessions import SessionStore


class SteeringServices:
    """Engine components shared by every request of one application.

    Built once per app by ``build_services`` and stored on ``app.state``.
    """

    def __init__(
        self,
        store: SessionStore,
        executor: ActionExecutor,
        escalations: EscalationEngine,
        flows: FlowCatalog,
        health: HealthMonitor,
        dashboard: DashboardAggregator,
        audit_log: AuditLog,
    ) -> None:
        self.store = store
        self.executor = executor
        self.escalations = escalations
        self.flows = flows
        self.health = health
        self.dashboard = dashboard
        self.audit_log = audit_log


def build_services(
    settings: Settings,
    metrics_source: Optional[MetricsSource] = None,
    probes: Optional[Iterable[CollaboratorProbe]] = None,
    clock: Callable[[], datetime] = utcnow,
) -> SteeringServices:
    """Wire the engine from settings.

    ``metrics_source`` and ``probes`` default to the simulated ones seeded
    from ``settings.metrics_seed``.
    """
    policy = settings.load_policy()
    audit_log = AuditLog()
    session_repo: InMemoryRepository[SteeringSession] = InMemoryRepository()

    store = SessionStore(
        policy,
        metrics_source or RandomMetricsSource(settings.metrics_seed),
        repository=session_repo,
        audit_log=audit_log,
        clock=clock,
    )
    escalations = EscalationEngine(audit_log=audit_log, clock=clock)
    executor = ActionExecutor(store, escalations, audit_log=audit_log, clock=clock)
    if probes is None:
        probes = default_probes(storage=session_repo, seed=settings.metrics_seed)
    health = HealthMonitor(probes, audit_log=audit_log, clock=clock)
    dashboard = DashboardAggregator(store, escalations, health, audit_log=audit_log, clock=clock)

    return SteeringServices(
        store=store,
        executor=executor,
        escalations=escalations,
        flows=FlowCatalog(),
        health=health,
        dashboard=dashboard,
        audit_log=audit_log,
    )


def get_services(request: Request) -> SteeringServices:
    return request.app.state.services


ServicesDep = Annotated[SteeringServices, Depends(get_services)]


def get_session_store(services: ServicesDep) -> SessionStore:
    return services.store


def get_executor(services: ServicesDep) -> ActionExecutor:
    return services.executor


def get_escalation_engine(services: ServicesDep) -> EscalationEngine:
    return services.escalations


def get_flow_catalog(services: ServicesDep) -> FlowCatalog:
    return services.flows


def get_health_monitor(services: ServicesDep) -> HealthMonitor:
    return services.health


def get_dashboard(services: ServicesDep) -> DashboardAggregator:
    return services.dashboard


def get_audit_log(services: ServicesDep) -> AuditLog:
    return services.audit_log


# Type aliases for dependency injection
StoreDep = Annotated[SessionStore, Depends(get_session_store)]
ExecutorDep = Annotated[ActionExecutor, Depends(get_executor)]
EscalationsDep = Annotated[EscalationEngine, Depends(get_escalation_engine)]
FlowsDep = Annotated[FlowCatalog, Depends(get_flow_catalog)]
HealthDep = Annotated[HealthMonitor, Depends(get_health_monitor)]
DashboardDep = Annotated[DashboardAggregator, Depends(get_dashboard)]
AuditDep = Annotated[AuditLog, Depends(get_audit_log)]
