"""
Core data models for the CallSteer call-steering engine.

A ``SteeringSession`` tracks one live check-in call.  Clinicians steer the
call by submitting ``SteeringAction`` records, each of which mutates the
session's status and/or its ``CallMetrics`` snapshot.  Emergencies are
recorded as ``EmergencyEscalation`` objects with a lifecycle independent of
sessions.

All models serialize with camelCase field names (``callId``,
``realTimeMetrics``) to match the dashboard's JSON contract; Python code
uses the snake_case attribute names.  Both spellings are accepted on input.

DISCLAIMER: Voice-biomarker metrics in this module are workflow signals for
clinician review.  They are not diagnostic measurements.
"""

from __future__ import annotations

import enum
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Build an id of the form ``<prefix>-<epoch ms>-<random suffix>``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SessionStatus(str, enum.Enum):
    """Lifecycle states of a steering session.

    ``ACTIVE`` is the initial state and ``ENDED`` is terminal.
    """

    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class ActionType(str, enum.Enum):
    """Closed set of interventions a clinician can apply to a live call."""

    PROMPT = "prompt"
    REDIRECT = "redirect"
    ESCALATE = "escalate"
    PAUSE = "pause"
    RESUME = "resume"
    INJECT_QUESTION = "inject_question"
    END_CALL = "end_call"


class Severity(str, enum.Enum):
    """Escalation severity, ordered ``LOW < MEDIUM < HIGH < CRITICAL``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class EscalationAction(str, enum.Enum):
    """What the care team must do in response to an escalation."""

    HUMAN_TAKEOVER = "human_takeover"
    EMERGENCY_SERVICES = "emergency_services"
    CLINICAL_ALERT = "clinical_alert"
    IMMEDIATE_CALLBACK = "immediate_callback"


class ServiceStatus(str, enum.Enum):
    """Reported status of an external collaborator."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    DOWN = "down"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class Biomarkers(CamelModel):
    """Acoustic proxies extracted from the patient's voice.

    Units: ``jitter`` and ``shimmer`` are relative perturbation ratios,
    ``hnr`` is harmonics-to-noise ratio in dB, ``speech_rate`` is words per
    minute and ``pause_duration`` is mean pause length in seconds.
    """

    jitter: float = Field(..., description="Cycle-to-cycle pitch perturbation.")
    shimmer: float = Field(..., description="Cycle-to-cycle amplitude perturbation.")
    hnr: float = Field(..., description="Harmonics-to-noise ratio (dB).")
    speech_rate: float = Field(..., description="Words per minute.")
    pause_duration: float = Field(..., description="Mean pause length (seconds).")


class CallMetrics(CamelModel):
    """Point-in-time quality and risk snapshot of a call.

    The snapshot is overwritten on every update; it is not versioned.
    ``risk_indicators`` is recomputed from the other fields on every update
    and never accumulates stale labels.
    """

    duration: int = Field(default=0, ge=0, description="Elapsed call time in seconds.")
    voice_quality: float = Field(..., description="Signal confidence, 0-1.")
    stress_level: float = Field(..., description="Estimated vocal stress, 0-1.")
    cooperation_level: float = Field(..., description="Engagement with the agent, 0-1.")
    biomarkers: Biomarkers
    risk_indicators: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Action payloads (one shape per action type)
# ---------------------------------------------------------------------------

class _Payload(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True
    )


class PromptPayload(_Payload):
    text: Optional[str] = None


class RedirectPayload(_Payload):
    topic: Optional[str] = None


class InjectQuestionPayload(_Payload):
    question: Optional[str] = None


class EscalatePayload(_Payload):
    """Parameters for the escalation filed alongside an ``escalate`` action."""

    severity: Severity = Severity.MEDIUM
    escalation_action: EscalationAction = EscalationAction.CLINICAL_ALERT
    notes: Optional[str] = None


class ControlPayload(_Payload):
    """Payload for ``pause``, ``resume`` and ``end_call``."""

    reason: Optional[str] = None


ActionPayload = Union[
    EscalatePayload,
    PromptPayload,
    RedirectPayload,
    InjectQuestionPayload,
    ControlPayload,
]

PAYLOAD_MODELS: dict[ActionType, type[_Payload]] = {
    ActionType.PROMPT: PromptPayload,
    ActionType.REDIRECT: RedirectPayload,
    ActionType.INJECT_QUESTION: InjectQuestionPayload,
    ActionType.ESCALATE: EscalatePayload,
    ActionType.PAUSE: ControlPayload,
    ActionType.RESUME: ControlPayload,
    ActionType.END_CALL: ControlPayload,
}


# ---------------------------------------------------------------------------
# Actions and sessions
# ---------------------------------------------------------------------------

class SteeringAction(CamelModel):
    """A single clinician- or system-issued intervention.

    Actions are immutable once created and belong to exactly one session.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: generate_id("action"))
    type: ActionType
    timestamp: AwareDatetime = Field(default_factory=utcnow)
    description: str = Field(..., min_length=1)
    payload: Optional[ActionPayload] = None


class ConversationStep(CamelModel):
    id: str
    name: str
    prompt: str
    expected_responses: list[str] = Field(default_factory=list)
    next_steps: dict[str, str] = Field(default_factory=dict)
    biomarker_targets: Optional[list[str]] = None
    duration: Optional[int] = None


class FlowTrigger(CamelModel):
    condition: str = Field(..., description="risk_level, symptoms, manual or time_based.")
    value: Any = None
    action: str = Field(..., description="start_flow, skip_step or escalate.")


class ConversationFlow(CamelModel):
    """Scripted conversation content.  Treated as opaque data by the engine."""

    id: str
    name: str
    description: str = ""
    steps: list[ConversationStep] = Field(default_factory=list)
    triggers: list[FlowTrigger] = Field(default_factory=list)
    is_active: bool = True


class SteeringSession(CamelModel):
    """One active or historical call-steering engagement.

    ``actions`` is append-only and in chronological order.  ``end_time`` is
    set if and only if ``status`` is ``ENDED``.
    """

    id: str = Field(default_factory=lambda: generate_id("session"))
    call_id: str = Field(..., min_length=1)
    patient_id: str = Field(..., min_length=1)
    clinician_id: str = Field(..., min_length=1)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    actions: list[SteeringAction] = Field(default_factory=list)
    current_flow: Optional[ConversationFlow] = None
    current_step: Optional[str] = None
    real_time_metrics: CallMetrics


# ---------------------------------------------------------------------------
# Escalations and collaborator health
# ---------------------------------------------------------------------------

class EmergencyEscalation(CamelModel):
    """A clinical emergency record, optionally tied to a session.

    ``resolved`` starts ``False``.  ``immediate_actions`` is derived once at
    creation from the severity/action lookup table and is informational
    only; no paging or dispatch happens inside the engine.
    """

    id: str = Field(default_factory=lambda: generate_id("escalation"))
    severity: Severity
    reason: str = Field(..., min_length=1)
    action: EscalationAction
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    notes: Optional[str] = None
    session_id: Optional[str] = None
    immediate_actions: list[str] = Field(default_factory=list)


class ServiceHealth(CamelModel):
    status: ServiceStatus
    response_time_ms: Optional[int] = None
    active_connections: Optional[int] = None
    detail: str = ""
    last_check: datetime = Field(default_factory=utcnow)
