"""
Steering action routes.

``POST /actions`` applies one clinician action to one live session.
``GET /actions`` lists a session's action log, or the most recent actions
across all sessions when no session is named.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query

from callsteer.api.dependencies import ExecutorDep, StoreDep
from callsteer.api.schemas import ActionListResponse, ActionRequest, ActionResponse
from callsteer.exceptions import MissingFieldError

router = APIRouter(prefix="/actions", tags=["actions"])


@router.post("", response_model=ActionResponse)
def apply_action(request: ActionRequest, executor: ExecutorDep):
    if not request.session_id or request.action is None:
        raise MissingFieldError("Missing sessionId or action")

    result = executor.apply(request.session_id, request.action)
    return ActionResponse(
        action=result.action,
        session=result.session,
        escalation=result.escalation,
    )


@router.get("", response_model=ActionListResponse)
def list_actions(
    store: StoreDep,
    session_id: Annotated[Optional[str], Query(alias="sessionId")] = None,
    limit: Annotated[Optional[int], Query(gt=0)] = None,
):
    if session_id:
        return ActionListResponse(actions=store.list_actions(session_id))
    return ActionListResponse(actions=store.recent_actions(limit))
