"""Tests for the reputation service facade — proves end-to-end event handling."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from warden.actions.effector import LoggingEffector
from warden.models.classification import (
    BehaviorSignal,
    ClassificationResult,
    CoreViolationType,
    Sentiment,
    Verdict,
    ViolationFinding,
    ViolationSeverity,
)
from warden.models.enforcement import ActionKind, ExecutionStatus
from warden.models.watch import BehavioralEvent, ConditionType
from warden.persistence.event_log import EventKind, EventLog
from warden.persistence.state_store import InMemoryStateStore
from warden.policy.resolver import PolicyResolver
from warden.service import ReputationService

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


class _ToxicityClassifier:
    def classify(self, content, condition_type):
        if condition_type == ConditionType.TOXICITY and "toxic" in content:
            return ClassificationResult(Verdict.FLAGGED, 0.9, "hostile tone")
        return ClassificationResult(Verdict.CLEAR, 0.05)


class _Detector:
    def __init__(self, findings=None) -> None:
        self.findings = findings or []

    def detect(self, content):
        return list(self.findings)


@pytest.fixture
def effector() -> LoggingEffector:
    return LoggingEffector()


@pytest.fixture
def service(resolver: PolicyResolver, effector: LoggingEffector):
    svc = ReputationService(
        resolver,
        event_log=EventLog(),
        classifier=_ToxicityClassifier(),
        detector=_Detector(),
        effector=effector,
        clock=lambda: T0,
    )
    yield svc
    svc.close()


def _event(event_id, minutes=0.0, content="toxic nonsense", user="user-42", signal=None):
    return BehavioralEvent(
        event_id=event_id,
        user_id=user,
        scope_id="guild-1",
        content=content,
        timestamp=T0 + timedelta(minutes=minutes),
        signal=signal,
    )


LADDER_WATCH = {
    "scope_id": "guild-1",
    "created_by": "mod-alice",
    "duration_hours": 24,
    "target": {"user_ids": ["user-42"]},
    "conditions": [{"type": "toxicity", "threshold": 0.7}],
    "escalation": {
        "reset_after_hours": 6,
        "stages": [
            {"violation_count": 1, "action": "warn"},
            {"violation_count": 2, "action": "timeout", "parameters": {"duration": "10m"}},
            {"violation_count": 3, "action": "ban"},
        ],
    },
}


class TestEscalationScenario:
    def test_three_strikes(self, service: ReputationService, effector: LoggingEffector) -> None:
        service.adjust_trust("user-42", -5, "earlier spam")
        assert service.create_watch(LADDER_WATCH, T0).success

        outcomes = [
            service.handle_event(_event(f"e{i}", minutes=10 * (i + 1)))
            for i in range(3)
        ]

        stages = [o.triggers[0].stage.action for o in outcomes]
        assert stages == [ActionKind.WARN, ActionKind.TIMEOUT, ActionKind.BAN]
        assert effector.calls == [
            (ActionKind.WARN, "user-42", {}),
            (ActionKind.TIMEOUT, "user-42", {"duration_seconds": 600}),
            (ActionKind.BAN, "user-42", {}),
        ]
        watch_events = [
            e for e in service.get_trust("user-42").history
            if e.reason.startswith("Watch trigger")
        ]
        assert [e.score_after for e in watch_events] == [40, 35, 30]
        assert outcomes[-1].trust.score == 30

    def test_audit_trail(self, service: ReputationService) -> None:
        service.create_watch(LADDER_WATCH, T0)
        service.handle_event(_event("e1", minutes=5))
        log = service.event_log
        assert len(log.events(EventKind.WATCH_CREATED)) == 1
        assert len(log.events(EventKind.VIOLATION_RECORDED)) == 1
        assert len(log.events(EventKind.ESCALATION_STAGE_REACHED)) == 1
        assert len(log.events(EventKind.ACTION_EXECUTED)) == 1
        assert len(log.events(EventKind.WATCH_TRIGGERED)) == 1


class TestHandleEvent:
    def test_signal_scoring_and_recommendation(self, service: ReputationService) -> None:
        service.adjust_trust("u1", -28, "history")
        outcome = service.handle_event(_event(
            "e1", content="hello", user="u1", signal=BehaviorSignal(toxicity=0.8),
        ))
        assert outcome.trust.score == 17
        assert outcome.recommendation == ActionKind.TIMEOUT
        assert "Trust score low" in outcome.recommendation_reason
        assert outcome.triggers == ()

    def test_redemption_on_good_message(self, service: ReputationService) -> None:
        service.adjust_trust("u1", -20, "history")
        outcome = service.handle_event(_event(
            "e1", content="here is the fix", user="u1",
            signal=BehaviorSignal(toxicity=0.0, sentiment=Sentiment.POSITIVE, is_helpful=True),
        ))
        assert outcome.redemption.redeemed
        assert outcome.redemption.points == 5
        assert outcome.trust.score == 37

    def test_core_violation_enforced(self, resolver: PolicyResolver, effector: LoggingEffector) -> None:
        detector = _Detector([ViolationFinding(
            CoreViolationType.SCAM, ViolationSeverity.CRITICAL, 0.99, "wallet drainer link",
        )])
        service = ReputationService(resolver, detector=detector, effector=effector, clock=lambda: T0)
        outcome = service.handle_event(_event("e1", content="claim here", user="u1"))
        assert outcome.core.violated
        assert outcome.trust.score == 0
        assert outcome.core_enforcement.status == ExecutionStatus.EXECUTED
        assert effector.calls == [(ActionKind.BAN, "u1", {})]
        service.close()

    def test_core_assessment_can_be_disabled(self, resolver: PolicyResolver) -> None:
        service = ReputationService(resolver, assess_core_violations=False, clock=lambda: T0)
        outcome = service.handle_event(_event("e1", content="you idiot", user="u1"))
        assert outcome.core is None
        assert outcome.trust.score == 50
        service.close()


class TestWatchOperations:
    def test_create_reports_problems(self, service: ReputationService) -> None:
        result = service.create_watch({"scope_id": "guild-1", "duration_hours": 1,
                                       "target": {}, "conditions": [], "actions": []})
        assert not result.success
        assert len(result.errors) >= 3

    def test_create_returns_expiry(self, service: ReputationService) -> None:
        result = service.create_watch(LADDER_WATCH, T0)
        assert result.data["expires_at"] == "2026-03-02T12:00:00+00:00"

    def test_cancel(self, service: ReputationService) -> None:
        watch_id = service.create_watch(LADDER_WATCH, T0).data["watch_id"]
        assert service.cancel_watch(watch_id).success
        second = service.cancel_watch(watch_id)
        assert second.errors == [f"Watch already inactive: {watch_id}"]
        assert service.cancel_watch("nope").errors == ["Watch not found: nope"]

    def test_list_and_sweep(self, service: ReputationService) -> None:
        service.create_watch(dict(LADDER_WATCH, duration_hours=1), T0)
        service.create_watch(dict(LADDER_WATCH, scope_id="guild-2"), T0)
        assert len(service.list_watches()) == 2
        assert len(service.list_watches("guild-2")) == 1
        assert len(service.sweep_watches(T0 + timedelta(hours=2))) == 1


class TestTrustOperations:
    def test_adjust_requires_reason(self, service: ReputationService) -> None:
        assert not service.adjust_trust("u1", 5, "  ").success

    def test_adjust_reports_before_and_after(self, service: ReputationService) -> None:
        result = service.adjust_trust("u1", 20, "great help", actor_id="mod-alice")
        assert result.data["score_before"] == 50
        assert result.data["score_after"] == 70
        assert result.data["level"] == "trusted"

    def test_lock_user(self, service: ReputationService) -> None:
        assert service.lock_user("u1", "confirmed scammer").success
        again = service.lock_user("u1", "again")
        assert again.errors == ["User already locked: u1"]
        result = service.adjust_trust("u1", 30, "appeal")
        assert result.data["score_after"] == 0
        assert result.data["locked"] is True

    def test_run_decay(self, service: ReputationService) -> None:
        service.adjust_trust("u1", -30, "abuse")
        result = service.run_decay(T0 + timedelta(days=10))
        assert result.data["decayed"] == 1
        assert service.get_trust("u1").score == pytest.approx(30)


class TestLifecycle:
    def test_state_survives_restart(self, resolver: PolicyResolver) -> None:
        store = InMemoryStateStore()
        first = ReputationService(resolver, store=store, clock=lambda: T0)
        first.adjust_trust("u1", -10, "spam")
        first.create_watch(LADDER_WATCH, T0)
        first.close()

        second = ReputationService(resolver, store=store, clock=lambda: T0)
        assert second.load().data == {"users": 1, "watches": 1}
        assert second.get_trust("u1").score == 40
        assert len(second.list_watches()) == 1
        second.close()

    def test_background_tasks(self, service: ReputationService) -> None:
        service.start()
        assert service.status()["background"] == {"trust-decay": True, "watch-expiry": True}
        service.stop()
        assert service.status()["background"] == {"trust-decay": False, "watch-expiry": False}

    def test_status(self, service: ReputationService) -> None:
        service.create_watch(LADDER_WATCH, T0)
        service.adjust_trust("u1", -5, "spam")
        status = service.status()
        assert status["watches"] == {"total": 1, "active": 1}
        assert status["trust"]["total"] == 1
        assert status["events"] > 0
