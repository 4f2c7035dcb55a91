"""Reputation service — unified facade for the engine.

This is the primary interface for programmatic access. It wires:
- TrustLedger (global scores, decay, redemption, permanent floor)
- CoreViolationAssessor (global trust impact of universal violations)
- ConditionEvaluator / ViolationTracker / EscalationResolver
- ConditionalActionEvaluator (enforcement through the effector)
- WatchRegistry (active rules, per-event trigger path)
- Background sweeps (decay, watch expiry)

Operations a caller can get wrong return a ServiceResult rather than
raising. Every state change is appended to the event log when one is
configured; enforcement failures never undo bookkeeping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from warden.actions.effector import EnforcementEffector, LoggingEffector
from warden.actions.evaluator import ConditionalActionEvaluator
from warden.concurrency import PeriodicTask
from warden.conditions.classifier import Classifier
from warden.conditions.evaluator import ConditionEvaluator
from warden.errors import ValidationError
from warden.escalation.resolver import EscalationResolver
from warden.escalation.tracker import ViolationTracker
from warden.models.enforcement import ActionKind, ExecutionResult
from warden.models.trust import RedemptionResult, TrustScore
from warden.models.watch import BehavioralEvent, TriggerEvent
from warden.persistence import codec
from warden.persistence.event_log import EventLog
from warden.persistence.state_store import StateStore
from warden.policy.resolver import PolicyResolver
from warden.trust.ledger import TrustLedger
from warden.trust.signals import CoreAssessment, CoreViolationAssessor, ViolationDetector
from warden.watch.registry import WatchRegistry
from warden.watch.selector import MemberDirectory, TargetMatcher

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventOutcome:
    """Everything one behavioural event caused."""
    event_id: str
    user_id: str
    trust: TrustScore
    triggers: tuple[TriggerEvent, ...] = ()
    core: Optional[CoreAssessment] = None
    core_enforcement: Optional[ExecutionResult] = None
    redemption: Optional[RedemptionResult] = None
    recommendation: Optional[ActionKind] = None
    recommendation_reason: str = ""


class ReputationService:
    """Reputation and escalation engine facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = ReputationService(resolver, effector=my_effector)

        result = service.create_watch({...})
        outcome = service.handle_event(event)

        service.start()   # background decay and expiry sweeps
        ...
        service.close()

    Persistence (optional):
        service = ReputationService(resolver, store=store, event_log=log)
        service.load()    # hydrate watches and scores from the store
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[StateStore] = None,
        event_log: Optional[EventLog] = None,
        classifier: Optional[Classifier] = None,
        detector: Optional[ViolationDetector] = None,
        effector: Optional[EnforcementEffector] = None,
        directory: Optional[MemberDirectory] = None,
        assess_core_violations: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._event_log = event_log
        self._clock = clock
        self._assess_core = assess_core_violations

        self._ledger = TrustLedger(resolver, store=store, event_log=event_log, clock=clock)
        self._tracker = ViolationTracker(resolver, store=store, event_log=event_log)
        self._conditions = ConditionEvaluator(
            resolver, classifier=classifier, ledger=self._ledger, tracker=self._tracker,
        )
        self._actions = ConditionalActionEvaluator(effector or LoggingEffector(), event_log=event_log)
        self._matcher = TargetMatcher(self._ledger, directory)
        self._registry = WatchRegistry(
            resolver,
            self._ledger,
            self._conditions,
            self._tracker,
            self._actions,
            self._matcher,
            escalation=EscalationResolver(),
            store=store,
            event_log=event_log,
            clock=clock,
        )
        self._assessor = CoreViolationAssessor(
            resolver, self._ledger, detector=detector, event_log=event_log,
        )

        self._tasks = [
            PeriodicTask(
                "trust-decay",
                resolver.decay_policy().sweep_interval_seconds,
                self.run_decay,
            ),
            PeriodicTask(
                "watch-expiry",
                resolver.watch_sweep_interval(),
                self.sweep_watches,
            ),
        ]

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> TrustLedger:
        return self._ledger

    @property
    def registry(self) -> WatchRegistry:
        return self._registry

    @property
    def tracker(self) -> ViolationTracker:
        return self._tracker

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> ServiceResult:
        """Hydrate persisted scores and watches from the store."""
        users = self._ledger.load_all()
        watches = self._registry.load_all()
        return ServiceResult(success=True, data={"users": users, "watches": watches})

    def start(self) -> None:
        for task in self._tasks:
            task.start()

    def stop(self) -> None:
        for task in self._tasks:
            task.stop()

    def close(self) -> None:
        self.stop()
        self._conditions.close()
        self._assessor.close()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(self, event: BehavioralEvent) -> EventOutcome:
        """Run one behavioural event through the whole engine.

        Order: behaviour-signal scoring and redemption, core-violation
        assessment, then watches. Each stage is independently fallible.
        """
        redemption = None
        if event.signal is not None:
            self._ledger.update_from_signal(
                event.user_id, event.signal,
                {"event_id": event.event_id, "scope_id": event.scope_id},
                event.timestamp,
            )
            redemption = self._ledger.check_redemption(event.user_id, event.signal, event.timestamp)

        core = None
        core_enforcement = None
        if self._assess_core:
            core = self._assessor.assess(
                event.user_id, event.content,
                {"event_id": event.event_id, "scope_id": event.scope_id},
                event.timestamp,
            )
            if core.enforcement is not None:
                core_enforcement = self._actions.execute(
                    core.enforcement.action,
                    event.user_id,
                    core.enforcement.parameters,
                    now=event.timestamp,
                )

        triggers = self._registry.on_event(event)
        trust = self._ledger.get_score(event.user_id, event.timestamp)

        recommendation, reason = None, ""
        if event.signal is not None:
            recommendation, reason = self._ledger.recommend_action(
                trust.score, event.signal.toxicity, event.signal.manipulation,
            )

        return EventOutcome(
            event_id=event.event_id,
            user_id=event.user_id,
            trust=trust,
            triggers=tuple(triggers),
            core=core,
            core_enforcement=core_enforcement,
            redemption=redemption,
            recommendation=recommendation,
            recommendation_reason=reason,
        )

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def create_watch(self, data: dict[str, Any], now: Optional[datetime] = None) -> ServiceResult:
        try:
            watch_id = self._registry.create_from_dict(data, now)
        except ValidationError as exc:
            return ServiceResult(success=False, errors=exc.problems)
        watch = self._registry.get(watch_id)
        return ServiceResult(success=True, data={
            "watch_id": watch_id,
            "expires_at": codec.dump_dt(watch.expires_at) if watch else None,
        })

    def cancel_watch(self, watch_id: str) -> ServiceResult:
        if self._registry.get(watch_id) is None:
            return ServiceResult(success=False, errors=[f"Watch not found: {watch_id}"])
        if not self._registry.cancel(watch_id):
            return ServiceResult(success=False, errors=[f"Watch already inactive: {watch_id}"])
        return ServiceResult(success=True, data={"watch_id": watch_id})

    def list_watches(self, scope_id: Optional[str] = None) -> list[dict[str, Any]]:
        return [codec.watch_to_dict(w) for w in self._registry.list_active(scope_id)]

    def sweep_watches(self, now: Optional[datetime] = None) -> list[str]:
        return self._registry.sweep_expired(now)

    # ------------------------------------------------------------------
    # Trust
    # ------------------------------------------------------------------

    def get_trust(self, user_id: str) -> TrustScore:
        return self._ledger.get_score(user_id)

    def adjust_trust(
        self,
        user_id: str,
        delta: float,
        reason: str,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        """Manual moderator adjustment."""
        if not reason.strip():
            return ServiceResult(success=False, errors=["A reason is required"])
        before = self._ledger.get_score(user_id)
        after = self._ledger.apply_delta(
            user_id, delta, reason, {"source": "manual", "actor_id": actor_id},
        )
        return ServiceResult(success=True, data={
            "user_id": user_id,
            "score_before": before.score,
            "score_after": after.score,
            "level": after.level.value,
            "locked": after.permanently_locked,
        })

    def lock_user(self, user_id: str, reason: str) -> ServiceResult:
        if not reason.strip():
            return ServiceResult(success=False, errors=["A reason is required"])
        if self._ledger.is_locked(user_id):
            return ServiceResult(success=False, errors=[f"User already locked: {user_id}"])
        score = self._ledger.set_permanent_floor(user_id, reason)
        return ServiceResult(success=True, data={"user_id": user_id, "score": score.score})

    def run_decay(self, now: Optional[datetime] = None) -> ServiceResult:
        report = self._ledger.apply_decay(now)
        return ServiceResult(success=True, data={
            "examined": report.examined,
            "decayed": report.decayed,
            "skipped_locked": report.skipped_locked,
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        return {
            "trust": self._ledger.stats(),
            "watches": {
                "total": len(self._registry),
                "active": len(self._registry.list_active()),
            },
            "events": self._event_log.count if self._event_log is not None else 0,
            "background": {task.name: task.running for task in self._tasks},
        }
