"""
Emergency escalation routes.

Escalations are filed and resolved independently of sessions.  The list
endpoint returns the pending queue, most severe and newest first.
"""

from typing import Annotated

from fastapi import APIRouter, Query, status

from callsteer.api.dependencies import EscalationsDep
from callsteer.api.schemas import (
    EscalationCreate,
    EscalationListResponse,
    EscalationResponse,
    EscalationUpdate,
)
from callsteer.exceptions import MissingFieldError

router = APIRouter(prefix="/escalations", tags=["escalations"])


@router.post("", response_model=EscalationResponse, status_code=status.HTTP_201_CREATED)
def create_escalation(request: EscalationCreate, escalations: EscalationsDep):
    escalation = escalations.create_escalation(
        severity=request.severity,
        reason=request.reason,
        action=request.action,
        session_id=request.session_id,
        notes=request.notes,
    )
    return EscalationResponse(
        escalation=escalation,
        immediate_actions=escalation.immediate_actions,
    )


@router.get("", response_model=EscalationListResponse)
def list_escalations(
    escalations: EscalationsDep,
    include_resolved: Annotated[bool, Query(alias="includeResolved")] = False,
):
    if include_resolved:
        return EscalationListResponse(escalations=escalations.list_escalations())
    return EscalationListResponse(escalations=escalations.list_pending())


@router.patch("", response_model=EscalationResponse)
def update_escalation(request: EscalationUpdate, escalations: EscalationsDep):
    """Partially update an escalation: resolve it and/or attach notes."""
    if not request.escalation_id:
        raise MissingFieldError("Missing required fields: escalationId")

    escalation = escalations.resolve(
        request.escalation_id,
        resolved=request.resolved,
        notes=request.notes,
    )
    return EscalationResponse(
        escalation=escalation,
        immediate_actions=escalation.immediate_actions,
    )
