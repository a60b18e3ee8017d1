"""
Integration tests for the HTTP surface.

Each test builds an isolated app with a scripted metrics source and fixed
collaborator probes, and drives it through FastAPI's TestClient.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from callsteer.api import create_app
from callsteer.api.dependencies import build_services
from callsteer.config import Settings
from callsteer.health import AI_SPEECH, TELEPHONY
from callsteer.metrics import ScriptedMetricsSource
from callsteer.models import ServiceHealth, ServiceStatus

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class _FixedProbe:
    def __init__(self, name: str, status: ServiceStatus = ServiceStatus.OPERATIONAL) -> None:
        self.name = name
        self.status = status

    def check(self) -> ServiceHealth:
        return ServiceHealth(status=self.status, response_time_ms=3, last_check=T0)


def _make_client(telephony: ServiceStatus = ServiceStatus.OPERATIONAL) -> TestClient:
    settings = Settings(_env_file=None)
    services = build_services(
        settings,
        metrics_source=ScriptedMetricsSource(elapsed=15),
        probes=[_FixedProbe(TELEPHONY, telephony), _FixedProbe(AI_SPEECH)],
    )
    return TestClient(create_app(settings, services=services))


def _create_session(client: TestClient, n: int = 1) -> dict:
    response = client.post(
        "/sessions",
        json={"callId": f"call-{n}", "patientId": f"patient-{n}", "clinicianId": f"clin-{n}"},
    )
    assert response.status_code == 201
    return response.json()["session"]


def _apply(client: TestClient, session_id: str, action_type: str, **extra):
    return client.post(
        "/actions",
        json={"sessionId": session_id, "action": {"type": action_type, "description": action_type, **extra}},
    )


@pytest.fixture
def client():
    return _make_client()


# ---------------------------------------------------------------------------
# 1. Sessions
# ---------------------------------------------------------------------------

class TestSessionRoutes:
    def test_create_session(self, client):
        session = _create_session(client)
        assert session["callId"] == "call-1"
        assert session["status"] == "active"
        assert session["actions"] == []
        assert session["endTime"] is None
        assert session["realTimeMetrics"]["stressLevel"] == 0.3
        assert session["realTimeMetrics"]["riskIndicators"] == []

    def test_create_session_missing_fields(self, client):
        response = client.post("/sessions", json={"callId": "call-1"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["type"] == "MissingFieldError"
        assert "patientId" in body["error"]["message"]

    def test_get_and_list(self, client):
        created = _create_session(client)
        _create_session(client, 2)
        assert client.get(f"/sessions/{created['id']}").json()["session"]["id"] == created["id"]
        assert len(client.get("/sessions").json()["sessions"]) == 2

    def test_unknown_session(self, client):
        response = client.get("/sessions/session-missing")
        assert response.status_code == 404
        assert response.json()["error"]["type"] == "SessionNotFoundError"

    def test_assign_flow(self, client):
        session = _create_session(client)
        response = client.put(f"/sessions/{session['id']}/flow", json={"flowId": "emergency-protocol-flow"})
        assert response.status_code == 200
        assigned = response.json()["session"]
        assert assigned["currentFlow"]["id"] == "emergency-protocol-flow"
        assert assigned["currentStep"] == "emergency_check"

    def test_assign_unknown_flow(self, client):
        session = _create_session(client)
        response = client.put(f"/sessions/{session['id']}/flow", json={"flowId": "nope"})
        assert response.status_code == 404
        assert response.json()["error"]["type"] == "FlowNotFoundError"

    def test_list_flows(self, client):
        flows = client.get("/flows").json()["flows"]
        assert len(flows) == 3
        assert flows[0]["steps"][0]["expectedResponses"]


# ---------------------------------------------------------------------------
# 2. Actions
# ---------------------------------------------------------------------------

class TestActionRoutes:
    def test_lifecycle_over_http(self, client):
        session = _create_session(client)
        assert _apply(client, session["id"], "pause").json()["session"]["status"] == "paused"
        assert _apply(client, session["id"], "resume").json()["session"]["status"] == "active"
        ended = _apply(client, session["id"], "end_call").json()["session"]
        assert ended["status"] == "ended"
        assert ended["endTime"] is not None

    def test_escalate_action(self, client):
        session = _create_session(client)
        response = _apply(client, session["id"], "escalate", payload={"severity": "high"})
        assert response.status_code == 200
        body = response.json()
        metrics = body["session"]["realTimeMetrics"]
        assert metrics["stressLevel"] == pytest.approx(0.5)
        assert "Manual Escalation" in metrics["riskIndicators"]
        assert body["action"]["type"] == "escalate"
        assert body["escalation"]["severity"] == "high"
        assert body["escalation"]["sessionId"] == session["id"]

    def test_unknown_session_records_nothing(self, client):
        response = _apply(client, "session-ghost", "prompt")
        assert response.status_code == 404

        listed = client.get("/actions", params={"sessionId": "session-ghost"})
        assert listed.status_code == 200
        assert listed.json()["actions"] == []

    def test_invalid_action_type(self, client):
        session = _create_session(client)
        response = _apply(client, session["id"], "teleport")
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "InvalidActionError"
        assert client.get("/actions", params={"sessionId": session["id"]}).json()["actions"] == []

    def test_invalid_transition(self, client):
        session = _create_session(client)
        _apply(client, session["id"], "end_call")
        response = _apply(client, session["id"], "resume")
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "InvalidTransitionError"

    def test_missing_session_id(self, client):
        response = client.post("/actions", json={"action": {"type": "prompt", "description": "x"}})
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "MissingFieldError"

    def test_malformed_body(self, client):
        response = client.post("/actions", json={"sessionId": "s", "action": "prompt"})
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "ValidationError"

    def test_naive_timestamp_rejected_and_reads_still_work(self, client):
        session = _create_session(client)
        _apply(client, session["id"], "prompt")
        response = _apply(client, session["id"], "prompt", timestamp="2026-03-01T09:00:00")
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "InvalidActionError"

        assert client.get("/actions").status_code == 200
        assert len(client.get("/actions").json()["actions"]) == 1
        assert client.get("/dashboard").status_code == 200

    def test_recent_actions_across_sessions(self, client):
        first = _create_session(client, 1)
        second = _create_session(client, 2)
        _apply(client, first["id"], "prompt")
        _apply(client, second["id"], "redirect")
        actions = client.get("/actions").json()["actions"]
        assert len(actions) == 2
        assert len(client.get("/actions", params={"limit": 1}).json()["actions"]) == 1


# ---------------------------------------------------------------------------
# 3. Escalations
# ---------------------------------------------------------------------------

class TestEscalationRoutes:
    def test_critical_emergency_escalation(self, client):
        response = client.post(
            "/escalations",
            json={"severity": "critical", "reason": "chest pain", "action": "emergency_services"},
        )
        assert response.status_code == 201
        body = response.json()
        immediate = body["immediateActions"]
        for expected in (
            "Emergency services notified",
            "On-call physician paged",
            "Patient emergency contact called",
            "911 dispatch initiated",
            "EMS en route notification sent",
        ):
            assert expected in immediate
        assert body["escalation"]["resolved"] is False

    def test_missing_fields(self, client):
        response = client.post("/escalations", json={"severity": "high"})
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "MissingFieldError"

    def test_invalid_severity(self, client):
        response = client.post(
            "/escalations", json={"severity": "severe", "reason": "x", "action": "clinical_alert"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "InvalidSeverityError"

    def test_pending_sorted_and_resolve(self, client):
        low = client.post("/escalations", json={"severity": "low", "reason": "a", "action": "clinical_alert"})
        crit = client.post(
            "/escalations", json={"severity": "critical", "reason": "b", "action": "emergency_services"}
        )
        pending = client.get("/escalations").json()["escalations"]
        assert [e["severity"] for e in pending] == ["critical", "low"]

        crit_id = crit.json()["escalation"]["id"]
        patched = client.patch("/escalations", json={"escalationId": crit_id, "resolved": True, "notes": "EMS"})
        assert patched.status_code == 200
        assert patched.json()["escalation"]["resolved"] is True
        assert patched.json()["escalation"]["notes"] == "EMS"

        pending = client.get("/escalations").json()["escalations"]
        assert [e["id"] for e in pending] == [low.json()["escalation"]["id"]]
        everything = client.get("/escalations", params={"includeResolved": "true"}).json()["escalations"]
        assert len(everything) == 2

    def test_patch_unknown(self, client):
        response = client.patch("/escalations", json={"escalationId": "escalation-missing", "resolved": True})
        assert response.status_code == 404

    def test_patch_missing_id(self, client):
        assert client.patch("/escalations", json={"resolved": True}).status_code == 400


# ---------------------------------------------------------------------------
# 4. Dashboard
# ---------------------------------------------------------------------------

class TestDashboardRoutes:
    def test_dashboard_shape_and_idempotence(self, client):
        session = _create_session(client)
        _apply(client, session["id"], "escalate")
        first = client.get("/dashboard").json()
        second = client.get("/dashboard").json()
        assert first == second
        dashboard = first["dashboard"]
        assert dashboard["summary"]["activeSessionsCount"] == 1
        assert dashboard["summary"]["pendingEscalationsCount"] == 1
        assert dashboard["summary"]["highRiskSessions"] == 1
        assert dashboard["systemStatus"]["voiceServiceStatus"] == "unknown"

    def test_refresh(self, client):
        session = _create_session(client)
        body = client.post("/dashboard", json={"action": "refresh"}).json()
        assert body["refreshed"] == 1
        refreshed = client.get(f"/sessions/{session['id']}").json()["session"]
        assert refreshed["realTimeMetrics"]["duration"] == 15

    def test_health_check_updates_system_status(self, client):
        body = client.post("/dashboard", json={"action": "healthCheck"}).json()
        assert body["health"][TELEPHONY]["status"] == "operational"
        status = client.get("/dashboard").json()["dashboard"]["systemStatus"]
        assert status["voiceServiceStatus"] == "operational"
        assert status["steeringServiceStatus"] == "operational"
        assert status["lastHealthCheck"] is not None

    def test_create_demo_session(self, client):
        session = client.post("/dashboard", json={"action": "createDemoSession"}).json()["session"]
        assert session["patientId"] == "DEMO-PATIENT-001"
        assert session["clinicianId"] == "clinician-001"
        assert session["callId"].startswith("demo-call-")

    def test_unknown_action(self, client):
        response = client.post("/dashboard", json={"action": "reboot"})
        assert response.status_code == 400
        assert response.json()["success"] is False


# ---------------------------------------------------------------------------
# 5. Audit, health and middleware
# ---------------------------------------------------------------------------

class TestSystemRoutes:
    def test_audit_export(self, client):
        session = _create_session(client)
        _apply(client, session["id"], "prompt")
        export = client.get("/audit", params={"target": session["id"]}).json()
        assert export["export_metadata"]["entry_count"] == 2
        assert export["export_metadata"]["chain_integrity"] == "VALID"
        assert export["entries"][0]["metadata"]["patient_id"] == "[REDACTED]"

    def test_liveness(self, client):
        assert client.get("/health/live").json()["status"] == "alive"

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_readiness_fails_when_collaborator_down(self):
        response = _make_client(telephony=ServiceStatus.DOWN).get("/health/ready")
        assert response.status_code == 503
        assert response.json()["error"]["type"] == "ServiceUnavailableError"

    def test_request_id_generated(self, client):
        assert client.get("/health/live").headers["X-Request-ID"]

    def test_request_id_echoed(self, client):
        response = client.get("/sessions", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
