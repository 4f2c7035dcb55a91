"""Watch registry — active monitoring rules and the per-event trigger path.

For every live watch in the event's scope whose target matches the
user, each condition is checked. A triggered condition:
1. records a violation for (watch, user),
2. applies the condition type's trust penalty through the ledger,
3. runs the escalation stage reached by the new violation count, or,
   when no stage is reached (or there is no ladder), its default actions,
4. yields a TriggerEvent.

Invariants:
- ``active`` goes true -> false once (cancel or expiry), never back.
- A watch is re-checked for liveness right before actions run, so a
  cancel lands even for events already being processed.
- Expired watches stop matching before the sweeper removes them; the
  sweep is idempotent and its records are purged with the watch.
- Enforcement failures are reported in the TriggerEvent results and do
  not undo violation or trust bookkeeping.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Optional

from warden.actions.evaluator import ConditionalActionEvaluator, RuntimeContext
from warden.conditions.evaluator import ConditionEvaluator
from warden.errors import ValidationError
from warden.escalation.resolver import EscalationResolver
from warden.escalation.tracker import ViolationTracker
from warden.models.classification import ConditionResult
from warden.models.enforcement import ExecutionResult
from warden.models.violation import Evidence
from warden.models.watch import (
    BehavioralEvent,
    EscalationStage,
    TriggerEvent,
    WatchCondition,
    WatchConfig,
)
from warden.persistence import codec
from warden.persistence.event_log import EventKind, EventLog
from warden.persistence.state_store import StateStore
from warden.policy.resolver import PolicyResolver
from warden.policy.validation import WatchValidator, new_watch_id
from warden.trust.ledger import TrustLedger
from warden.watch.selector import TargetMatcher

logger = logging.getLogger(__name__)

_KEY_PREFIX = "watch:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatchRegistry:
    """Holds watches and routes behavioural events through them.

    Usage:
        registry = WatchRegistry(resolver, ledger, evaluator, tracker, actions, matcher)
        watch_id = registry.create(config)
        triggers = registry.on_event(event)
        registry.sweep_expired()
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: TrustLedger,
        conditions: ConditionEvaluator,
        tracker: ViolationTracker,
        actions: ConditionalActionEvaluator,
        matcher: TargetMatcher,
        escalation: Optional[EscalationResolver] = None,
        store: Optional[StateStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._conditions = conditions
        self._tracker = tracker
        self._actions = actions
        self._matcher = matcher
        self._escalation = escalation or EscalationResolver()
        self._validator = WatchValidator(resolver)
        self._store = store
        self._event_log = event_log
        self._clock = clock
        self._watches: dict[str, WatchConfig] = {}
        self._lock = threading.Lock()
        self._message_counts: Counter = Counter()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, config: WatchConfig) -> str:
        """Validate and register a watch. Raises ValidationError."""
        if not config.watch_id:
            config.watch_id = new_watch_id()
        problems = self._validator.validate(config)
        if problems:
            raise ValidationError(problems)
        config = self._validator.normalized(config)
        with self._lock:
            if config.watch_id in self._watches:
                raise ValidationError([f"watch {config.watch_id} already exists"])
            self._watches[config.watch_id] = config
        self._persist(config)
        self._emit(EventKind.WATCH_CREATED, config, {
            "expires_at": codec.dump_dt(config.expires_at),
            "conditions": [c.type.value for c in config.conditions],
            "escalation": config.escalation_enabled,
        }, config.created_at)
        logger.info(
            "Watch %s created in %s until %s",
            config.watch_id, config.scope_id, config.expires_at.isoformat(),
        )
        return config.watch_id

    def create_from_dict(self, data: dict, now: Optional[datetime] = None) -> str:
        return self.create(self._validator.parse_watch(data, now or self._clock()))

    def cancel(self, watch_id: str) -> bool:
        """Deactivate a watch. True only if this call deactivated it."""
        with self._lock:
            watch = self._watches.get(watch_id)
            if watch is None or not watch.active:
                return False
            watch.active = False
        self._persist(watch)
        self._emit(EventKind.WATCH_CANCELLED, watch, {})
        logger.info("Watch %s cancelled", watch_id)
        return True

    def sweep_expired(self, now: Optional[datetime] = None) -> list[str]:
        """Remove expired and cancelled watches. Returns the removed ids."""
        now = now or self._clock()
        with self._lock:
            candidates = list(self._watches)

        removed: list[tuple[WatchConfig, bool]] = []
        for watch_id in candidates:
            with self._lock:
                watch = self._watches.get(watch_id)
                if watch is None:
                    continue
                expired = watch.is_expired(now)
                if not expired and watch.active:
                    continue
                del self._watches[watch_id]
                watch.active = False
            removed.append((watch, expired))

        with self._lock:
            live_scopes = {w.scope_id for w in self._watches.values()}
            for key in [k for k in self._message_counts if k[0] not in live_scopes]:
                del self._message_counts[key]
        self._conditions.prune(now)

        for watch, expired in removed:
            self._tracker.clear_watch(watch.watch_id)
            if self._store is not None:
                try:
                    self._store.delete(_KEY_PREFIX + watch.watch_id)
                except Exception:
                    logger.error("Failed to delete watch %s", watch.watch_id, exc_info=True)
            if expired:
                self._emit(EventKind.WATCH_EXPIRED, watch, {
                    "trigger_count": watch.trigger_count,
                }, now)
        if removed:
            logger.info("Swept %d watches", len(removed))
        return [w.watch_id for w, _ in removed]

    def load_all(self) -> int:
        """Hydrate persisted watches. Returns how many were loaded."""
        if self._store is None:
            return 0
        loaded = 0
        for key in self._store.keys(_KEY_PREFIX):
            data = self._store.get(key)
            if data is None:
                continue
            try:
                watch = codec.watch_from_dict(data)
            except (KeyError, TypeError, ValueError):
                logger.error("Skipping unreadable stored watch %s", key, exc_info=True)
                continue
            with self._lock:
                self._watches.setdefault(watch.watch_id, watch)
            loaded += 1
        return loaded

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, watch_id: str) -> Optional[WatchConfig]:
        with self._lock:
            return self._watches.get(watch_id)

    def list_active(
        self, scope_id: Optional[str] = None, now: Optional[datetime] = None,
    ) -> list[WatchConfig]:
        now = now or self._clock()
        with self._lock:
            watches = list(self._watches.values())
        return [
            w for w in watches
            if w.is_live(now) and (scope_id is None or w.scope_id == scope_id)
        ]

    def trigger_count(self, watch_id: str) -> int:
        watch = self.get(watch_id)
        return watch.trigger_count if watch is not None else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._watches)

    # ------------------------------------------------------------------
    # Event path
    # ------------------------------------------------------------------

    def on_event(
        self, event: BehavioralEvent, now: Optional[datetime] = None,
    ) -> list[TriggerEvent]:
        now = now or event.timestamp
        with self._lock:
            watches = [w for w in self._watches.values() if w.scope_id == event.scope_id]

        matched = [
            w for w in watches
            if w.is_live(now)
            and self._matcher.matches(w.target, w.scope_id, event.user_id, now)
        ]
        if not matched:
            return []
        # Only watched members are counted; see sweep_expired for pruning.
        with self._lock:
            self._message_counts[(event.scope_id, event.user_id)] += 1

        triggers: list[TriggerEvent] = []
        for watch in matched:
            for condition in watch.conditions:
                result = self._conditions.check(event, condition, watch.watch_id)
                if not result.triggered:
                    continue
                trigger = self._handle_trigger(watch, condition, result, event, now)
                if trigger is not None:
                    triggers.append(trigger)
        return triggers

    def _handle_trigger(
        self,
        watch: WatchConfig,
        condition: WatchCondition,
        result: ConditionResult,
        event: BehavioralEvent,
        now: datetime,
    ) -> Optional[TriggerEvent]:
        if not watch.active:
            return None

        reset_after = watch.escalation.reset_after_hours if watch.escalation else None
        record = self._tracker.record(
            watch.watch_id,
            event.user_id,
            Evidence(
                timestamp=now,
                condition_type=condition.type.value,
                evidence=result.evidence,
                confidence=result.confidence,
            ),
            reset_after_hours=reset_after,
            now=now,
        )
        with self._lock:
            watch.trigger_count += 1
        self._persist(watch)

        penalty = self._resolver.trigger_trust_penalty(condition.type)
        if penalty:
            trust = self._ledger.apply_delta(
                event.user_id,
                penalty,
                f"Watch trigger: {condition.type.value}",
                {"watch_id": watch.watch_id, "event_id": event.event_id, "evidence": result.evidence},
                now,
            )
        else:
            trust = self._ledger.get_score(event.user_id, now)

        context = RuntimeContext(
            user_id=event.user_id,
            trust_score=trust.score,
            violation_count=record.count,
            user_age_days=self._matcher.member_age_days(watch.scope_id, event.user_id, now),
            message_count=self._message_counts[(event.scope_id, event.user_id)],
            watch_id=watch.watch_id,
        )

        stage: Optional[EscalationStage] = None
        results: tuple[ExecutionResult, ...] = ()
        if not watch.active:
            logger.info("Watch %s cancelled mid-event; no action for %s", watch.watch_id, event.user_id)
        else:
            if watch.escalation_enabled:
                stage = self._escalation.resolve(watch.escalation, record.count)
            if stage is not None:
                self._emit(EventKind.ESCALATION_STAGE_REACHED, watch, {
                    "user_id": event.user_id,
                    "violation_count": record.count,
                    "stage": stage.violation_count,
                    "action": stage.action.value,
                    "description": stage.description,
                }, now, actor_id=event.user_id)
                results = (
                    self._actions.execute(stage.action, event.user_id, stage.parameters,
                                          context=context, now=now),
                )
            else:
                # No ladder, or the count is still below its first stage.
                results = tuple(self._actions.evaluate_batch(watch.actions, context, now))

        trigger = TriggerEvent(
            watch_id=watch.watch_id,
            user_id=event.user_id,
            condition_type=condition.type,
            evidence=result.evidence,
            confidence=result.confidence,
            timestamp=now,
            violation_count=record.count,
            stage=stage,
            results=results,
        )
        self._emit(EventKind.WATCH_TRIGGERED, watch, {
            "user_id": event.user_id,
            "event_id": event.event_id,
            "condition_type": condition.type.value,
            "evidence": result.evidence,
            "confidence": result.confidence,
            "violation_count": record.count,
            "stage": stage.violation_count if stage else None,
            "results": [r.status.value for r in results],
        }, now, actor_id=event.user_id)
        logger.warning(
            "Watch %s triggered for %s: %s (violation #%d)",
            watch.watch_id, event.user_id, condition.type.value, record.count,
        )
        return trigger

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persist(self, watch: WatchConfig) -> None:
        if self._store is None:
            return
        try:
            self._store.put(_KEY_PREFIX + watch.watch_id, codec.watch_to_dict(watch))
        except Exception:
            logger.error("Failed to persist watch %s", watch.watch_id, exc_info=True)

    def _emit(
        self,
        kind: EventKind,
        watch: WatchConfig,
        payload: dict,
        timestamp: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> None:
        if self._event_log is None:
            return
        body = {"watch_id": watch.watch_id, "scope_id": watch.scope_id}
        body.update(payload)
        actor = actor_id or watch.created_by or watch.watch_id
        self._event_log.emit(kind, actor, body, timestamp_utc=timestamp)
