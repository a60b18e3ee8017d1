"""
Health check endpoints.

Liveness only says the process is serving.  Readiness probes every
external collaborator and answers 503 when any of them is down.
"""

from fastapi import APIRouter

from callsteer import __version__
from callsteer.api.dependencies import HealthDep

router = APIRouter()


@router.get("/health/live")
def liveness():
    return {"status": "alive", "version": __version__}


@router.get("/health/ready")
def readiness(health: HealthDep):
    """Raises ``ServiceUnavailableError`` (503) when a collaborator is down."""
    services = health.require_operational()
    return {"status": "ready", "services": services}
