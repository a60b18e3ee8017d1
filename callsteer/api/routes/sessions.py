"""
Session API routes.

Endpoints for opening steering sessions, reading them back and pointing a
live call at a conversation flow.
"""

from fastapi import APIRouter, status

from callsteer.api.dependencies import FlowsDep, StoreDep
from callsteer.api.schemas import FlowAssign, SessionCreate, SessionListResponse, SessionResponse
from callsteer.exceptions import MissingFieldError

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(request: SessionCreate, store: StoreDep):
    """Open a session for a call that has just connected."""
    missing = [
        alias
        for alias, value in (
            ("callId", request.call_id),
            ("patientId", request.patient_id),
            ("clinicianId", request.clinician_id),
        )
        if not value or not value.strip()
    ]
    if missing:
        raise MissingFieldError(f"Missing required fields: {', '.join(missing)}")

    session = store.create_session(
        call_id=request.call_id,
        patient_id=request.patient_id,
        clinician_id=request.clinician_id,
    )
    return SessionResponse(session=session)


@router.get("", response_model=SessionListResponse)
def list_sessions(store: StoreDep):
    return SessionListResponse(sessions=store.list_sessions())


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, store: StoreDep):
    return SessionResponse(session=store.get_session(session_id))


@router.put("/{session_id}/flow", response_model=SessionResponse)
def assign_flow(session_id: str, request: FlowAssign, store: StoreDep, flows: FlowsDep):
    """Point the session at a conversation flow template, starting at its first step."""
    if not request.flow_id:
        raise MissingFieldError("Missing required fields: flowId")
    flow = flows.get(request.flow_id)
    return SessionResponse(session=store.set_conversation_flow(session_id, flow))
