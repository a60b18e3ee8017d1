"""
Dashboard routes.

``GET /dashboard`` is a pure read.  ``POST /dashboard`` runs one of the
dashboard's side effects: a metrics refresh over active calls, a
collaborator health check, or creation of a demo session.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query

from callsteer.api.dependencies import DashboardDep
from callsteer.api.schemas import DashboardCommand
from callsteer.exceptions import InvalidActionError

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

DASHBOARD_ACTIONS = ("refresh", "healthCheck", "createDemoSession")


@router.get("")
def get_dashboard(
    dashboard: DashboardDep,
    limit: Annotated[Optional[int], Query(gt=0)] = None,
):
    return {"success": True, "dashboard": dashboard.build_dashboard(limit)}


@router.post("")
def run_dashboard_action(command: DashboardCommand, dashboard: DashboardDep):
    if command.action == "refresh":
        refreshed = dashboard.refresh_all()
        return {"success": True, "refreshed": len(refreshed), "sessions": refreshed}

    if command.action == "healthCheck":
        return {"success": True, "health": dashboard.health_check()}

    if command.action == "createDemoSession":
        return {"success": True, "session": dashboard.create_demo_session()}

    raise InvalidActionError(
        f"Unknown dashboard action '{command.action}'. Must be one of: {', '.join(DASHBOARD_ACTIONS)}"
    )
