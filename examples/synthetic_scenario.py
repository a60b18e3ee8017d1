"""
Synthetic Scenario: Steering a Heart-Failure Check-In Call
==========================================================

This script walks one synthetic check-in call through the CallSteer
engine without the HTTP layer.  No real patient data is used.

Steps demonstrated:
  1. Load the steering policy from YAML
  2. Open a session for a call that has just connected
  3. Point the call at a conversation flow
  4. Run metric refresh ticks while the AI agent talks
  5. Steer the call: prompt, redirect, pause / resume
  6. Escalate, which files an emergency escalation
  7. Build the clinician dashboard
  8. Resolve the escalation and end the call
  9. Export the audit trail for review

DISCLAIMER: This is a synthetic demonstration.  Metrics are simulated and
carry no clinical meaning.

Usage:
    python -m examples.synthetic_scenario
    # or: python examples/synthetic_scenario.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from callsteer.audit import AuditLog
from callsteer.config import DEFAULT_POLICY, load_policy_from_yaml
from callsteer.dashboard import DashboardAggregator
from callsteer.escalation import EscalationEngine
from callsteer.executor import ActionExecutor
from callsteer.flows import FlowCatalog
from callsteer.health import HealthMonitor, default_probes
from callsteer.logging import configure_logging
from callsteer.metrics import RandomMetricsSource
from callsteer.sessions import SessionStore


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _show_metrics(session) -> None:
    m = session.real_time_metrics
    print(
        f"  t={m.duration:>4}s  voice={m.voice_quality:.2f}  stress={m.stress_level:.2f}  "
        f"coop={m.cooperation_level:.2f}  hnr={m.biomarkers.hnr:.1f}  "
        f"risk={m.risk_indicators or '-'}"
    )


def main() -> None:
    configure_logging(json_output=False)

    _banner("CallSteer Synthetic Scenario: Heart-Failure Check-In")
    print("DISCLAIMER: All data in this demo is entirely synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Load steering policy
    # ------------------------------------------------------------------
    _banner("Step 1: Load Steering Policy")

    sample_yaml = Path(__file__).parent / "steering_policy.yaml"
    if sample_yaml.exists():
        policy = load_policy_from_yaml(sample_yaml)
        print(f"Loaded policy: {policy.name}")
    else:
        policy = DEFAULT_POLICY
        print("Using built-in default policy")
    print(f"  stress threshold: {policy.risk_thresholds.stress_high}")
    print(f"  escalate stress delta: {policy.action_effects.escalate_stress}")

    # ------------------------------------------------------------------
    # Step 2: Wire the engine and open a session
    # ------------------------------------------------------------------
    _banner("Step 2: Open Session")

    audit_log = AuditLog()
    store = SessionStore(policy, RandomMetricsSource(seed=2026), audit_log=audit_log)
    escalations = EscalationEngine(audit_log=audit_log)
    executor = ActionExecutor(store, escalations, audit_log=audit_log)
    health = HealthMonitor(default_probes(seed=2026), audit_log=audit_log)
    dashboard = DashboardAggregator(store, escalations, health, audit_log=audit_log)

    session = store.create_session("call-synthetic-01", "patient-synthetic-01", "dr_synthetic_001")
    print(f"Session opened: {session.id} (status: {session.status.value})")
    _show_metrics(session)

    # ------------------------------------------------------------------
    # Step 3: Conversation flow
    # ------------------------------------------------------------------
    _banner("Step 3: Assign Conversation Flow")

    flow = FlowCatalog().get("symptom-assessment-flow")
    session = store.set_conversation_flow(session.id, flow)
    print(f"Flow: {session.current_flow.name}, starting at step '{session.current_step}'")

    # ------------------------------------------------------------------
    # Step 4: Metric refresh ticks
    # ------------------------------------------------------------------
    _banner("Step 4: Live Metric Refresh")

    for _ in range(3):
        dashboard.refresh_all()
        _show_metrics(store.get_session(session.id))

    # ------------------------------------------------------------------
    # Step 5: Steering actions
    # ------------------------------------------------------------------
    _banner("Step 5: Clinician Steering")

    for descriptor in (
        {"type": "prompt", "description": "Encourage patient to describe symptoms",
         "payload": {"text": "Take your time, tell me how your breathing has been."}},
        {"type": "redirect", "description": "Move to ankle swelling", "payload": {"topic": "swelling"}},
        {"type": "pause", "description": "Patient needs a moment"},
        {"type": "resume", "description": "Patient ready to continue"},
    ):
        result = executor.apply(session.id, descriptor)
        print(f"{result.action.type.value:<16} -> status {result.session.status.value}")
        _show_metrics(result.session)

    # ------------------------------------------------------------------
    # Step 6: Escalate
    # ------------------------------------------------------------------
    _banner("Step 6: Escalate")

    result = executor.apply(
        session.id,
        {
            "type": "escalate",
            "description": "(Synthetic) Patient reports chest tightness",
            "payload": {"severity": "high", "escalationAction": "human_takeover"},
        },
    )
    _show_metrics(result.session)
    print(f"Escalation filed: {result.escalation.id} ({result.escalation.severity.value})")
    for action in result.escalation.immediate_actions:
        print(f"  - {action}")

    # ------------------------------------------------------------------
    # Step 7: Dashboard
    # ------------------------------------------------------------------
    _banner("Step 7: Clinician Dashboard")

    dashboard.health_check()
    view = dashboard.build_dashboard()
    print(json.dumps(view.summary.model_dump(by_alias=True), indent=2))
    print(json.dumps(view.system_status.model_dump(mode="json", by_alias=True), indent=2))

    # ------------------------------------------------------------------
    # Step 8: Resolve and end
    # ------------------------------------------------------------------
    _banner("Step 8: Resolve Escalation and End Call")

    resolved = escalations.resolve(
        result.escalation.id,
        resolved=True,
        notes="Synthetic resolution: clinician took over, callback booked.",
        actor_id="dr_synthetic_001",
    )
    print(f"Escalation resolved: {resolved.resolved}")

    result = executor.apply(session.id, {"type": "end_call", "description": "Clinician ended the call"})
    print(f"Call ended at {result.session.end_time.isoformat()} after {len(result.session.actions)} actions")

    # ------------------------------------------------------------------
    # Step 9: Audit export
    # ------------------------------------------------------------------
    _banner("Step 9: Audit Trail Export")

    export = audit_log.export_for_review(target_entity=session.id)
    print(json.dumps(export["export_metadata"], indent=2))
    valid, broken_at = audit_log.verify_chain()
    print(f"\nFull chain verification: valid={valid}, broken_at={broken_at}")

    _banner("Scenario Complete")
    print("All data was synthetic.  Metrics are simulated and not diagnostic.")


if __name__ == "__main__":
    main()
