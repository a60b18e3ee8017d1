"""
Tests for callsteer.models -- Core data models.

Covers: id generation, camelCase serialization, action immutability,
per-type payload validation, severity ordering, and session defaults.
"""

from __future__ import annotations

import re

import pytest
from pydantic import ValidationError

from callsteer.metrics import reference_baseline
from callsteer.models import (
    PAYLOAD_MODELS,
    ActionType,
    ControlPayload,
    EscalatePayload,
    EscalationAction,
    SessionStatus,
    Severity,
    SteeringAction,
    SteeringSession,
    generate_id,
)


def _make_session(**overrides) -> SteeringSession:
    fields = {
        "call_id": "call-1",
        "patient_id": "patient-1",
        "clinician_id": "clin-1",
        "real_time_metrics": reference_baseline(),
    }
    fields.update(overrides)
    return SteeringSession(**fields)


# ---------------------------------------------------------------------------
# 1. Identifiers
# ---------------------------------------------------------------------------

class TestIdentifiers:
    def test_generated_id_format(self):
        assert re.fullmatch(r"session-\d+-[0-9a-f]{9}", generate_id("session"))

    def test_generated_ids_are_unique(self):
        ids = {generate_id("action") for _ in range(200)}
        assert len(ids) == 200

    def test_models_assign_prefixed_ids(self):
        session = _make_session()
        action = SteeringAction(type=ActionType.PROMPT, description="nudge")
        assert session.id.startswith("session-")
        assert action.id.startswith("action-")


# ---------------------------------------------------------------------------
# 2. Serialization
# ---------------------------------------------------------------------------

class TestSerialization:
    def test_session_dumps_camel_case(self):
        data = _make_session().model_dump(mode="json", by_alias=True)
        assert data["callId"] == "call-1"
        assert data["status"] == "active"
        assert data["endTime"] is None
        assert data["realTimeMetrics"]["stressLevel"] == 0.3
        assert data["realTimeMetrics"]["biomarkers"]["speechRate"] == 120.0
        assert data["realTimeMetrics"]["riskIndicators"] == []

    def test_session_accepts_both_spellings(self):
        by_alias = SteeringSession.model_validate(
            {
                "callId": "c",
                "patientId": "p",
                "clinicianId": "d",
                "realTimeMetrics": reference_baseline().model_dump(by_alias=True),
            }
        )
        assert by_alias.call_id == "c"
        assert by_alias.real_time_metrics.biomarkers.hnr == 15.2

    def test_blank_identity_rejected(self):
        with pytest.raises(ValidationError):
            _make_session(call_id="")


# ---------------------------------------------------------------------------
# 3. Actions and payloads
# ---------------------------------------------------------------------------

class TestSteeringAction:
    def test_action_is_immutable(self):
        action = SteeringAction(type=ActionType.PAUSE, description="hold")
        with pytest.raises(ValidationError):
            action.description = "changed"

    def test_description_required(self):
        with pytest.raises(ValidationError):
            SteeringAction(type=ActionType.PROMPT, description="")

    def test_every_action_type_has_a_payload_model(self):
        assert set(PAYLOAD_MODELS) == set(ActionType)

    def test_escalate_payload_defaults(self):
        payload = EscalatePayload()
        assert payload.severity == Severity.MEDIUM
        assert payload.escalation_action == EscalationAction.CLINICAL_ALERT

    def test_escalate_payload_from_camel_case(self):
        payload = EscalatePayload.model_validate(
            {"severity": "critical", "escalationAction": "human_takeover"}
        )
        assert payload.severity == Severity.CRITICAL
        assert payload.escalation_action == EscalationAction.HUMAN_TAKEOVER

    def test_unknown_payload_keys_rejected(self):
        with pytest.raises(ValidationError):
            ControlPayload.model_validate({"reason": "x", "volume": 11})

    def test_bad_payload_enum_rejected(self):
        with pytest.raises(ValidationError):
            EscalatePayload.model_validate({"severity": "catastrophic"})


# ---------------------------------------------------------------------------
# 4. Enums
# ---------------------------------------------------------------------------

class TestEnums:
    def test_severity_rank_order(self):
        ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    def test_session_defaults(self):
        session = _make_session()
        assert session.status == SessionStatus.ACTIVE
        assert session.actions == []
        assert session.current_flow is None
        assert session.current_step is None

    def test_str_enum_values(self):
        assert ActionType("inject_question") is ActionType.INJECT_QUESTION
        assert SessionStatus.ENDED == "ended"
