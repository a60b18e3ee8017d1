"""
API request and response schemas.

Request fields the engine treats as required are declared optional here so
that a missing field reaches the engine and is reported with the same
error type and message as any other caller would get.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from callsteer.models import (
    CamelModel,
    ConversationFlow,
    EmergencyEscalation,
    SteeringAction,
    SteeringSession,
)


# ============ REQUESTS ============


class SessionCreate(CamelModel):
    call_id: Optional[str] = None
    patient_id: Optional[str] = None
    clinician_id: Optional[str] = None


class FlowAssign(CamelModel):
    flow_id: Optional[str] = None


class ActionRequest(CamelModel):
    session_id: Optional[str] = None
    action: Optional[dict[str, Any]] = Field(
        default=None,
        description="Action descriptor: type, description, optional payload, id and timestamp.",
    )


class EscalationCreate(CamelModel):
    severity: Optional[str] = None
    reason: Optional[str] = None
    action: Optional[str] = None
    session_id: Optional[str] = None
    notes: Optional[str] = None


class EscalationUpdate(CamelModel):
    escalation_id: Optional[str] = None
    resolved: Optional[bool] = None
    notes: Optional[str] = None


class DashboardCommand(CamelModel):
    action: Optional[str] = Field(default=None, description="refresh, healthCheck or createDemoSession.")


# ============ RESPONSES ============


class SessionResponse(CamelModel):
    success: bool = True
    session: SteeringSession


class SessionListResponse(CamelModel):
    success: bool = True
    sessions: list[SteeringSession]


class FlowListResponse(CamelModel):
    success: bool = True
    flows: list[ConversationFlow]


class ActionResponse(CamelModel):
    success: bool = True
    action: SteeringAction
    session: SteeringSession
    escalation: Optional[EmergencyEscalation] = None


class ActionListResponse(CamelModel):
    success: bool = True
    actions: list[SteeringAction]


class EscalationResponse(CamelModel):
    success: bool = True
    escalation: EmergencyEscalation
    immediate_actions: list[str] = Field(default_factory=list)


class EscalationListResponse(CamelModel):
    success: bool = True
    escalations: list[EmergencyEscalation]
