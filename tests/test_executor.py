"""
Tests for callsteer.executor -- Action Executor.

Covers: the pause/resume/end lifecycle, metric effects of each action,
manual escalation, clamping under repeated actions, descriptor validation,
rejected actions leaving no trace, duplicate ids, caller timestamps,
concurrent actions on one session, escalations filed by
``escalate``, and audit entries.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from callsteer.audit import AuditEventType, AuditLog
from callsteer.config import DEFAULT_POLICY
from callsteer.escalation import EscalationEngine
from callsteer.exceptions import (
    InvalidActionError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from callsteer.executor import ActionExecutor, build_action
from callsteer.metrics import ScriptedMetricsSource, build_metrics, flatten, reference_baseline
from callsteer.models import (
    ActionType,
    EscalationAction,
    PromptPayload,
    SessionStatus,
    Severity,
)
from callsteer.sessions import SessionStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _make_executor(
    baseline=None,
    elapsed: int = 15,
    with_escalations: bool = True,
    audit_log: AuditLog | None = None,
):
    store = SessionStore(
        DEFAULT_POLICY,
        ScriptedMetricsSource(baseline=baseline, elapsed=elapsed),
        audit_log=audit_log,
        clock=lambda: T0,
    )
    engine = EscalationEngine(audit_log=audit_log, clock=lambda: T0) if with_escalations else None
    executor = ActionExecutor(store, engine, audit_log=audit_log, clock=lambda: T0)
    session = store.create_session("call-1", "patient-1", "clin-1")
    return store, engine, executor, session


def _action(action_type: str, description: str = "clinician action", **extra) -> dict:
    return {"type": action_type, "description": description, **extra}


# ---------------------------------------------------------------------------
# 1. Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_pause_resume_end(self):
        store, _, executor, session = _make_executor()

        result = executor.apply(session.id, _action("pause"))
        assert result.session.status == SessionStatus.PAUSED
        assert result.session.end_time is None

        result = executor.apply(session.id, _action("resume"))
        assert result.session.status == SessionStatus.ACTIVE

        result = executor.apply(session.id, _action("end_call"))
        assert result.session.status == SessionStatus.ENDED
        assert result.session.end_time == T0

        stored = store.get_session(session.id)
        assert [a.type for a in stored.actions] == [
            ActionType.PAUSE,
            ActionType.RESUME,
            ActionType.END_CALL,
        ]

    def test_end_from_paused(self):
        _, _, executor, session = _make_executor()
        executor.apply(session.id, _action("pause"))
        result = executor.apply(session.id, _action("end_call"))
        assert result.session.status == SessionStatus.ENDED
        assert result.session.end_time is not None

    def test_actions_after_end_rejected(self):
        store, _, executor, session = _make_executor()
        executor.apply(session.id, _action("end_call"))
        for action_type in ("prompt", "resume", "pause", "end_call"):
            with pytest.raises(InvalidTransitionError):
                executor.apply(session.id, _action(action_type))
        assert len(store.get_session(session.id).actions) == 1

    def test_steering_while_paused_rejected(self):
        store, _, executor, session = _make_executor()
        executor.apply(session.id, _action("pause"))
        with pytest.raises(InvalidTransitionError):
            executor.apply(session.id, _action("redirect"))
        stored = store.get_session(session.id)
        assert stored.status == SessionStatus.PAUSED
        assert len(stored.actions) == 1


# ---------------------------------------------------------------------------
# 2. Metric effects
# ---------------------------------------------------------------------------

class TestMetricEffects:
    def test_escalate_raises_stress_and_labels(self):
        _, _, executor, session = _make_executor()
        before = session.real_time_metrics.stress_level
        result = executor.apply(session.id, _action("escalate", "Patient reports chest pain"))
        metrics = result.session.real_time_metrics
        assert metrics.stress_level == pytest.approx(before + 0.20)
        assert "Manual Escalation" in metrics.risk_indicators

    def test_escalate_stress_clamped(self):
        values = flatten(reference_baseline())
        values["stress_level"] = 0.8
        _, _, executor, session = _make_executor(baseline=build_metrics(values))
        result = executor.apply(session.id, _action("escalate"))
        assert result.session.real_time_metrics.stress_level == 0.9

    def test_prompt_redirect_inject(self):
        _, _, executor, session = _make_executor()
        metrics = executor.apply(session.id, _action("prompt")).session.real_time_metrics
        assert metrics.cooperation_level == pytest.approx(0.85)

        metrics = executor.apply(session.id, _action("redirect")).session.real_time_metrics
        assert metrics.stress_level == pytest.approx(0.2)

        metrics = executor.apply(session.id, _action("inject_question")).session.real_time_metrics
        assert metrics.cooperation_level == pytest.approx(0.88)
        assert metrics.voice_quality == pytest.approx(0.87)

    def test_control_actions_leave_scores_alone(self):
        _, _, executor, session = _make_executor()
        metrics = executor.apply(session.id, _action("pause")).session.real_time_metrics
        assert flatten(metrics) == flatten(session.real_time_metrics)

    def test_every_action_advances_duration(self):
        _, _, executor, session = _make_executor(elapsed=12)
        executor.apply(session.id, _action("prompt"))
        result = executor.apply(session.id, _action("redirect"))
        assert result.session.real_time_metrics.duration == 24

    def test_repeated_actions_stay_in_bounds(self):
        _, _, executor, session = _make_executor()
        for _ in range(30):
            result = executor.apply(session.id, _action("prompt"))
        for _ in range(30):
            result = executor.apply(session.id, _action("escalate"))
        metrics = result.session.real_time_metrics
        assert metrics.cooperation_level == 0.95
        assert metrics.stress_level == 0.9
        assert metrics.risk_indicators == ["High Stress Detected", "Manual Escalation"]

    def test_manual_label_survives_later_actions(self):
        _, _, executor, session = _make_executor()
        executor.apply(session.id, _action("escalate"))
        executor.apply(session.id, _action("redirect"))
        result = executor.apply(session.id, _action("redirect"))
        assert result.session.real_time_metrics.risk_indicators == ["Manual Escalation"]

    def test_threshold_labels_recomputed(self):
        values = flatten(reference_baseline())
        values["stress_level"] = 0.75
        _, _, executor, session = _make_executor(baseline=build_metrics(values))
        assert session.real_time_metrics.risk_indicators == ["High Stress Detected"]
        result = executor.apply(session.id, _action("redirect"))
        assert result.session.real_time_metrics.risk_indicators == []


# ---------------------------------------------------------------------------
# 3. Validation
# ---------------------------------------------------------------------------

class TestValidation:
    def test_build_action_assigns_id_and_timestamp(self):
        action = build_action(_action("prompt", payload={"text": "How is your breathing?"}), lambda: T0)
        assert action.id.startswith("action-")
        assert action.timestamp == T0
        assert action.payload == PromptPayload(text="How is your breathing?")

    def test_build_action_keeps_caller_id(self):
        assert build_action(_action("pause", id="action-client-1")).id == "action-client-1"

    def test_missing_type_or_description(self):
        for descriptor in (
            {"description": "no type"},
            {"type": "prompt"},
            {"type": "prompt", "description": "   "},
            {"type": "", "description": "x"},
        ):
            with pytest.raises(InvalidActionError, match="missing type or description"):
                build_action(descriptor)

    def test_not_a_mapping(self):
        with pytest.raises(InvalidActionError):
            build_action(["prompt"])

    def test_unknown_type(self):
        with pytest.raises(InvalidActionError, match="Unknown action type 'sing'"):
            build_action(_action("sing"))

    def test_payload_shape_checked(self):
        with pytest.raises(InvalidActionError, match="Invalid payload"):
            build_action(_action("redirect", payload={"text": "wrong key for redirect"}))
        with pytest.raises(InvalidActionError):
            build_action(_action("escalate", payload={"severity": "apocalyptic"}))

    def test_invalid_action_leaves_log_untouched(self):
        store, _, executor, session = _make_executor()
        with pytest.raises(InvalidActionError):
            executor.apply(session.id, _action("sing"))
        stored = store.get_session(session.id)
        assert stored.actions == []
        assert stored.real_time_metrics == session.real_time_metrics

    def test_validation_precedes_lookup(self):
        _, _, executor, _ = _make_executor()
        with pytest.raises(InvalidActionError):
            executor.apply("session-missing", {"type": "prompt"})

    def test_unknown_session(self):
        store, _, executor, _ = _make_executor()
        with pytest.raises(SessionNotFoundError):
            executor.apply("session-missing", _action("prompt"))
        assert store.list_actions("session-missing") == []

    def test_duplicate_action_id_rejected(self):
        store, _, executor, session = _make_executor()
        executor.apply(session.id, _action("prompt", id="action-dup"))
        with pytest.raises(InvalidActionError, match="already recorded"):
            executor.apply(session.id, _action("redirect", id="action-dup"))
        assert len(store.get_session(session.id).actions) == 1

    def test_caller_timestamp_with_offset_kept(self):
        action = build_action(_action("prompt", timestamp="2026-03-01T10:30:00+01:00"))
        assert action.timestamp == datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_naive_timestamp_rejected(self):
        store, _, executor, session = _make_executor()
        executor.apply(session.id, _action("prompt"))
        with pytest.raises(InvalidActionError, match="timestamp"):
            executor.apply(session.id, _action("prompt", timestamp="2026-03-01T09:00:00"))
        assert len(store.get_session(session.id).actions) == 1
        assert len(store.recent_actions()) == 1


# ---------------------------------------------------------------------------
# 4. Escalations filed by escalate
# ---------------------------------------------------------------------------

class TestEscalateFilesEscalation:
    def test_default_payload(self):
        _, engine, executor, session = _make_executor()
        result = executor.apply(session.id, _action("escalate", "Patient sounds confused"))
        escalation = result.escalation
        assert escalation is not None
        assert escalation.severity == Severity.MEDIUM
        assert escalation.action == EscalationAction.CLINICAL_ALERT
        assert escalation.reason == "Patient sounds confused"
        assert escalation.session_id == session.id
        assert engine.list_pending() == [escalation]

    def test_payload_overrides(self):
        _, _, executor, session = _make_executor()
        result = executor.apply(
            session.id,
            _action(
                "escalate",
                "Severe chest pain",
                payload={"severity": "critical", "escalationAction": "emergency_services", "notes": "911"},
            ),
        )
        assert result.escalation.severity == Severity.CRITICAL
        assert result.escalation.action == EscalationAction.EMERGENCY_SERVICES
        assert result.escalation.notes == "911"
        assert "911 dispatch initiated" in result.escalation.immediate_actions

    def test_without_engine_only_session_changes(self):
        _, _, executor, session = _make_executor(with_escalations=False)
        result = executor.apply(session.id, _action("escalate"))
        assert result.escalation is None
        assert "Manual Escalation" in result.session.real_time_metrics.risk_indicators

    def test_rejected_escalate_files_nothing(self):
        _, engine, executor, session = _make_executor()
        executor.apply(session.id, _action("pause"))
        with pytest.raises(InvalidTransitionError):
            executor.apply(session.id, _action("escalate"))
        assert len(engine) == 0


# ---------------------------------------------------------------------------
# 5. Audit
# ---------------------------------------------------------------------------

class TestExecutorAudit:
    def test_applied_actions_audited(self):
        audit_log = AuditLog()
        _, _, executor, session = _make_executor(audit_log=audit_log)
        executor.apply(session.id, _action("pause"))
        executor.apply(session.id, _action("resume"))
        result = executor.apply(session.id, _action("escalate"), actor_id="dr_smith")

        applied = audit_log.query(target_entity=session.id, event_type=AuditEventType.ACTION_APPLIED)
        assert [e.metadata["action_type"] for e in applied] == ["pause", "resume", "escalate"]
        assert applied[0].actor_id == "clin-1"
        assert applied[-1].actor_id == "dr_smith"

        filed = audit_log.query(target_entity=result.escalation.id)
        assert [e.event_type for e in filed] == [AuditEventType.ESCALATION_CREATED]
        assert filed[0].metadata["session_id"] == session.id
        assert audit_log.verify_chain() == (True, None)

    def test_rejected_action_not_audited(self):
        audit_log = AuditLog()
        _, _, executor, session = _make_executor(audit_log=audit_log)
        with pytest.raises(InvalidActionError):
            executor.apply(session.id, _action("sing"))
        assert audit_log.query(event_type=AuditEventType.ACTION_APPLIED) == []


# ---------------------------------------------------------------------------
# 6. Concurrent actions on one session
# ---------------------------------------------------------------------------

def _run_threads(targets) -> None:
    start = threading.Barrier(len(targets))

    def _wrap(target):
        def _run():
            start.wait()
            target()

        return _run

    threads = [threading.Thread(target=_wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


class TestConcurrentActions:
    def test_prompts_from_many_threads_all_land(self):
        store, _, executor, session = _make_executor(elapsed=15)

        def _worker():
            for _ in range(10):
                executor.apply(session.id, _action("prompt"))

        _run_threads([_worker] * 4)

        stored = store.get_session(session.id)
        assert len(stored.actions) == 40
        assert len({a.id for a in stored.actions}) == 40
        assert stored.real_time_metrics.duration == 40 * 15

    def test_pause_and_end_call_race_leaves_legal_status(self):
        for _ in range(20):
            store, _, executor, session = _make_executor()
            outcomes: dict[str, object] = {}

            def _apply(action_type):
                def _run():
                    try:
                        outcomes[action_type] = executor.apply(session.id, _action(action_type))
                    except InvalidTransitionError as exc:
                        outcomes[action_type] = exc

                return _run

            _run_threads([_apply("pause"), _apply("end_call")])

            stored = store.get_session(session.id)
            assert stored.status == SessionStatus.ENDED
            assert stored.end_time == T0
            recorded = [a.type for a in stored.actions]
            if isinstance(outcomes["pause"], InvalidTransitionError):
                assert recorded == [ActionType.END_CALL]
            else:
                assert recorded == [ActionType.PAUSE, ActionType.END_CALL]
