"""
Collaborator Health Probes.

The dashboard reports the status of the external collaborators the
steering engine depends on: the telephony provider, the speech/LLM
service, storage and the realtime transport to clinician browsers.

Telephony, speech and realtime are owned by the outer integration layer,
so here they are ``SimulatedProbe`` stubs that report a weighted random
status and latency.  A deployment replaces them with live probes that
implement ``CollaboratorProbe``.  Storage is probed for real through the
engine's own repository.

A collaborator reported ``down`` is surfaced as
``ServiceUnavailableError`` by ``require_operational()``; nothing here
retries.
"""

from __future__ import annotations

import random
import time
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from callsteer.audit import AuditEventType, AuditLog
from callsteer.exceptions import ServiceUnavailableError
from callsteer.logging import get_logger
from callsteer.models import ServiceHealth, ServiceStatus, utcnow
from callsteer.repository import Repository

log = get_logger(__name__)

TELEPHONY = "telephony"
AI_SPEECH = "ai_speech"
STORAGE = "storage"
REALTIME = "realtime"


class CollaboratorProbe(Protocol):
    name: str

    def check(self) -> ServiceHealth: ...


class SimulatedProbe:
    """Stand-in probe reporting a weighted random status.

    Args:
        name: Collaborator name.
        latency_ms: ``(low, high)`` range of simulated response times.
        degraded_rate: Probability of reporting ``degraded``.
        down_rate: Probability of reporting ``down``.
        connections: Optional ``(low, high)`` range of active connections.
        rng: Random generator, seedable for tests.
    """

    def __init__(
        self,
        name: str,
        latency_ms: tuple[int, int] = (20, 70),
        degraded_rate: float = 0.1,
        down_rate: float = 0.1,
        connections: Optional[tuple[int, int]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if degraded_rate < 0 or down_rate < 0 or degraded_rate + down_rate > 1:
            raise ValueError("degraded_rate and down_rate must be >= 0 and sum to <= 1")
        self.name = name
        self._latency = latency_ms
        self._degraded_rate = degraded_rate
        self._down_rate = down_rate
        self._connections = connections
        self._rng = rng or random.Random()
        self._clock = clock

    def check(self) -> ServiceHealth:
        roll = self._rng.random()
        if roll < self._down_rate:
            status = ServiceStatus.DOWN
        elif roll < self._down_rate + self._degraded_rate:
            status = ServiceStatus.DEGRADED
        else:
            status = ServiceStatus.OPERATIONAL

        return ServiceHealth(
            status=status,
            response_time_ms=self._rng.randint(*self._latency),
            active_connections=self._rng.randint(*self._connections) if self._connections else None,
            detail="simulated",
            last_check=self._clock(),
        )


class RepositoryProbe:
    """Live probe: times a full listing of a repository."""

    def __init__(self, name: str, repository: Repository, clock: Callable[[], datetime] = utcnow) -> None:
        self.name = name
        self._repository = repository
        self._clock = clock

    def check(self) -> ServiceHealth:
        started = time.perf_counter()
        count = len(self._repository.list())
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return ServiceHealth(
            status=ServiceStatus.OPERATIONAL,
            response_time_ms=elapsed_ms,
            detail=f"{count} records",
            last_check=self._clock(),
        )


def default_probes(
    storage: Optional[Repository] = None,
    seed: Optional[int] = None,
) -> list[CollaboratorProbe]:
    """Probe set for a single-process deployment."""
    rng = random.Random(seed)
    probes: list[CollaboratorProbe] = [
        SimulatedProbe(TELEPHONY, latency_ms=(50, 150), rng=rng),
        SimulatedProbe(AI_SPEECH, latency_ms=(20, 70), rng=rng),
    ]
    if storage is not None:
        probes.append(RepositoryProbe(STORAGE, storage))
    else:
        probes.append(SimulatedProbe(STORAGE, latency_ms=(10, 40), degraded_rate=0, down_rate=0, rng=rng))
    probes.append(
        SimulatedProbe(REALTIME, latency_ms=(5, 25), degraded_rate=0, down_rate=0, connections=(5, 24), rng=rng)
    )
    return probes


class HealthMonitor:
    """Runs collaborator probes and keeps the latest snapshot."""

    def __init__(
        self,
        probes: Iterable[CollaboratorProbe],
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._probes = list(probes)
        self._audit_log = audit_log
        self._clock = clock
        self._snapshot: dict[str, ServiceHealth] = {}
        self._last_check: Optional[datetime] = None

    def run(self) -> dict[str, ServiceHealth]:
        """Probe every collaborator and store the results."""
        snapshot = {probe.name: probe.check() for probe in self._probes}
        self._snapshot = snapshot
        self._last_check = self._clock()

        statuses = {name: health.status.value for name, health in snapshot.items()}
        if any(h.status != ServiceStatus.OPERATIONAL for h in snapshot.values()):
            log.warning("health_check_degraded", services=statuses)
        else:
            log.info("health_check_completed", services=statuses)
        if self._audit_log is not None:
            self._audit_log.record(AuditEventType.HEALTH_CHECKED, target_entity="system", services=statuses)
        return dict(snapshot)

    @property
    def snapshot(self) -> dict[str, ServiceHealth]:
        return dict(self._snapshot)

    @property
    def last_check(self) -> Optional[datetime]:
        return self._last_check

    def status_of(self, name: str) -> ServiceStatus:
        health = self._snapshot.get(name)
        return health.status if health is not None else ServiceStatus.UNKNOWN

    def require_operational(self) -> dict[str, ServiceHealth]:
        """Run the probes; raise if any collaborator is down.

        Raises:
            ServiceUnavailableError: Listing every collaborator reported down.
        """
        snapshot = self.run()
        down = sorted(name for name, h in snapshot.items() if h.status == ServiceStatus.DOWN)
        if down:
            raise ServiceUnavailableError(f"Collaborators unavailable: {', '.join(down)}")
        return snapshot
