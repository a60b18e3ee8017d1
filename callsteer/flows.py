"""
Conversation Flow Catalog.

Built-in scripted conversation templates a clinician can point a live call
at.  The engine treats flows as opaque content: it stores a copy on the
session and tracks the current step id, but never walks or validates the
step graph.
"""

from __future__ import annotations

from typing import Iterable, Optional

from callsteer.exceptions import FlowNotFoundError
from callsteer.models import ConversationFlow, ConversationStep, FlowTrigger


def _symptom_assessment() -> ConversationFlow:
    return ConversationFlow(
        id="symptom-assessment-flow",
        name="Comprehensive Symptom Assessment",
        description="Detailed evaluation of heart failure symptoms",
        steps=[
            ConversationStep(
                id="greeting",
                name="Greeting",
                prompt="Hello, this is your routine heart health check. How are you feeling today?",
                expected_responses=["good", "bad", "okay", "tired"],
                next_steps={
                    "good": "breathing",
                    "bad": "detailed_symptoms",
                    "okay": "breathing",
                    "tired": "fatigue_assessment",
                },
                duration=30,
            ),
            ConversationStep(
                id="breathing",
                name="Breathing Assessment",
                prompt="Have you noticed any changes in your breathing or shortness of breath?",
                expected_responses=["yes", "no", "sometimes"],
                next_steps={"yes": "breathing_details", "no": "swelling", "sometimes": "breathing_details"},
                biomarker_targets=["breathing_pattern", "speech_effort"],
                duration=45,
            ),
            ConversationStep(
                id="swelling",
                name="Swelling Check",
                prompt="Have you noticed any swelling in your legs, ankles, or feet?",
                expected_responses=["yes", "no", "a_little"],
                next_steps={"yes": "swelling_details", "no": "weight_check", "a_little": "swelling_details"},
                duration=30,
            ),
        ],
        triggers=[FlowTrigger(condition="symptoms", value="severe", action="escalate")],
    )


def _medication_review() -> ConversationFlow:
    return ConversationFlow(
        id="medication-review-flow",
        name="Medication Adherence Review",
        description="Check medication compliance and side effects",
        steps=[
            ConversationStep(
                id="medication_greeting",
                name="Medication Check Greeting",
                prompt="Let's review your heart medications. Are you taking them as prescribed?",
                expected_responses=["yes", "no", "sometimes", "forgot"],
                next_steps={
                    "yes": "side_effects",
                    "no": "medication_issues",
                    "sometimes": "medication_issues",
                    "forgot": "adherence_support",
                },
                duration=30,
            ),
        ],
    )


def _emergency_protocol() -> ConversationFlow:
    return ConversationFlow(
        id="emergency-protocol-flow",
        name="Emergency Assessment Protocol",
        description="Rapid assessment for potential emergency situations",
        steps=[
            ConversationStep(
                id="emergency_check",
                name="Emergency Symptoms Check",
                prompt=(
                    "Are you experiencing severe chest pain, extreme shortness of breath, "
                    "or any other emergency symptoms right now?"
                ),
                expected_responses=["yes", "no"],
                next_steps={"yes": "immediate_escalation", "no": "symptom_severity"},
                duration=20,
            ),
        ],
        triggers=[FlowTrigger(condition="symptoms", value="emergency", action="escalate")],
    )


def builtin_flows() -> list[ConversationFlow]:
    return [_symptom_assessment(), _medication_review(), _emergency_protocol()]


class FlowCatalog:
    """Registry of conversation flow templates keyed by flow id."""

    def __init__(self, flows: Optional[Iterable[ConversationFlow]] = None) -> None:
        self._flows: dict[str, ConversationFlow] = {}
        for flow in builtin_flows() if flows is None else flows:
            self._flows[flow.id] = flow

    def get(self, flow_id: str) -> ConversationFlow:
        if flow_id not in self._flows:
            raise FlowNotFoundError(f"Conversation flow {flow_id} not found")
        return self._flows[flow_id].model_copy(deep=True)

    def list_templates(self) -> list[ConversationFlow]:
        return [flow.model_copy(deep=True) for flow in self._flows.values()]

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, flow_id: str) -> bool:
        return flow_id in self._flows
