"""Trust ledger — owns every user's trust score and its invariants.

Invariants enforced:
- min_score <= score <= max_score after every mutation (clamped, never rejected).
- level is recomputed from score on every mutation.
- Permanently locked users never gain: positive deltas are a silent
  no-op, negative deltas are recorded but the score stays at the floor.
- History is bounded; the oldest events are evicted first.
- Decay moves a score toward the neutral default and never past it.
- Mutations for one user are serialized; events are appended in the
  order they were committed.

Persistence is best-effort: the in-memory mutation always takes effect
and is visible to the next ``get_score``; a failed store write is logged.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from warden.concurrency import KeyedLock
from warden.models.classification import BehaviorSignal, Sentiment
from warden.models.enforcement import ActionKind
from warden.models.trust import (
    DecayReport,
    RedemptionProgress,
    RedemptionResult,
    TrustEvent,
    TrustLevel,
    TrustScore,
)
from warden.persistence import codec
from warden.persistence.event_log import EventKind, EventLog
from warden.persistence.state_store import StateStore
from warden.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_KEY_PREFIX = "trust:"
_SECONDS_PER_DAY = 86400.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrustLedger:
    """Bounded, decaying, lockable trust scores keyed by user id.

    Usage:
        ledger = TrustLedger(resolver, store=store, event_log=log)
        ledger.apply_delta("u1", -10, "toxic language")
        ledger.set_permanent_floor("u2", "confirmed scam")
        ledger.apply_decay()
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[StateStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._resolver = resolver
        self._bounds = resolver.trust_bounds()
        self._store = store
        self._event_log = event_log
        self._clock = clock
        self._records: dict[str, TrustScore] = {}
        self._index_lock = threading.Lock()
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def get_score(self, user_id: str, now: Optional[datetime] = None) -> TrustScore:
        """Return a snapshot of the user's score, creating it if absent."""
        with self._locks.hold(user_id):
            return self._load(user_id, now or self._clock()).snapshot()

    def apply_delta(
        self,
        user_id: str,
        delta: float,
        reason: str,
        context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TrustScore:
        """Apply a signed change and return the resulting snapshot.

        For a permanently locked user a positive delta is ignored and the
        unchanged score is returned. Callers must not assume a mutation
        happened.
        """
        now = now or self._clock()
        with self._locks.hold(user_id):
            record = self._load(user_id, now)
            self._apply(record, delta, reason, context or {}, now)
            return record.snapshot()

    def set_permanent_floor(
        self,
        user_id: str,
        reason: str,
        context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TrustScore:
        """Force the score to the floor and block all future increases.

        Terminal: there is no inverse operation.
        """
        now = now or self._clock()
        with self._locks.hold(user_id):
            record = self._load(user_id, now)
            before = record.score
            record.permanently_locked = True
            record.score = self._bounds.min_score
            record.level = self._resolver.trust_level(record.score)
            record.last_updated = now
            event = TrustEvent(
                timestamp=now,
                delta=record.score - before,
                reason=f"PERMANENT: {reason}",
                context=dict(context or {}),
                score_before=before,
                score_after=record.score,
            )
            self._append_history(record, event)
            self._persist(record)
            self._emit(EventKind.TRUST_LOCKED, record, event)
            logger.info("Permanent floor set for %s: %s", user_id, reason)
            return record.snapshot()

    def apply_decay(self, now: Optional[datetime] = None) -> DecayReport:
        """Nudge idle, unlocked scores toward the neutral default.

        A user is idle once ``grace_days`` have passed since their last
        activity. The nudge is ``points_per_day`` times the idle days not
        yet accounted for by an earlier sweep, capped at the neutral
        default. Keys are snapshotted first and each entry is locked on
        its own, so a sweep never blocks the ledger for a full scan.
        """
        now = now or self._clock()
        policy = self._resolver.decay_policy()
        neutral = self._bounds.default_score

        with self._index_lock:
            user_ids = list(self._records)

        examined = decayed = skipped_locked = 0
        for user_id in user_ids:
            with self._locks.hold(user_id):
                record = self._records.get(user_id)
                if record is None:
                    continue
                examined += 1
                if record.permanently_locked:
                    skipped_locked += 1
                    continue
                if record.score == neutral:
                    continue

                idle_days = (now - record.last_updated).total_seconds() / _SECONDS_PER_DAY
                if idle_days <= policy.grace_days:
                    continue

                accounted_from = record.last_updated
                if record.last_decayed is not None and record.last_decayed > accounted_from:
                    accounted_from = record.last_decayed
                days = (now - accounted_from).total_seconds() / _SECONDS_PER_DAY
                if days <= 0:
                    continue

                amount = days * policy.points_per_day
                before = record.score
                if before < neutral:
                    after = min(neutral, before + amount)
                else:
                    after = max(neutral, before - amount)
                if after == before:
                    continue

                record.score = after
                record.level = self._resolver.trust_level(after)
                record.last_decayed = now
                event = TrustEvent(
                    timestamp=now,
                    delta=after - before,
                    reason="inactivity decay",
                    context={"idle_days": round(idle_days, 3)},
                    score_before=before,
                    score_after=after,
                )
                self._append_history(record, event)
                self._persist(record)
                self._emit(EventKind.TRUST_DECAYED, record, event)
                decayed += 1

        if decayed:
            logger.info("Decay sweep moved %d of %d scores toward neutral", decayed, examined)
        return DecayReport(examined=examined, decayed=decayed, skipped_locked=skipped_locked)

    def check_redemption(
        self,
        user_id: str,
        signal: BehaviorSignal,
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        """Award recovery points to a low-trust user for good behaviour.

        Only users below the eligibility ceiling and not locked qualify.
        Awards are additive and capped per call.
        """
        now = now or self._clock()
        policy = self._resolver.redemption_policy()
        with self._locks.hold(user_id):
            record = self._load(user_id, now)
            if record.permanently_locked:
                return RedemptionResult(False, 0, "Permanent ban - no redemption possible")
            if record.score >= policy.eligibility_ceiling:
                return RedemptionResult(False, 0, "Trust score already healthy")

            points = 0.0
            reasons: list[str] = []
            if (
                signal.toxicity < policy.positive_clean_max_toxicity
                and signal.sentiment == Sentiment.POSITIVE
            ):
                points += policy.positive_clean_points
                reasons.append("positive and non-toxic message")
            if signal.is_helpful:
                points += policy.helpful_points
                reasons.append("helpful to community")
            if (
                signal.manipulation < policy.clean_max_manipulation
                and signal.toxicity < policy.clean_max_toxicity
            ):
                points += policy.clean_communication_points
                reasons.append("clean communication")

            points = min(points, policy.max_points_per_call)
            if points <= 0:
                return RedemptionResult(False, 0, "No redemption earned")

            reason = ", ".join(reasons)
            event = self._apply(
                record, points, f"Redemption: {reason}", {"source": "redemption"}, now,
            )
            self._emit(EventKind.REDEMPTION_GRANTED, record, event)
            logger.info("Redemption for %s: +%s (%s)", user_id, points, reason)
            return RedemptionResult(True, points, reason)

    # ------------------------------------------------------------------
    # Behaviour signals
    # ------------------------------------------------------------------

    def update_from_signal(
        self,
        user_id: str,
        signal: BehaviorSignal,
        context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TrustScore:
        """Score one analysed message and record it as a single event."""
        policy = self._resolver.signal_policy()
        delta = 0.0
        reasons: list[str] = []

        if signal.toxicity > policy.severe_toxicity_threshold:
            delta += policy.severe_toxicity_delta
            reasons.append("severe toxic language")
        elif signal.toxicity > policy.mild_toxicity_threshold:
            delta += policy.mild_toxicity_delta
            reasons.append("mild toxic language")

        if signal.manipulation > policy.manipulation_threshold:
            delta += policy.manipulation_delta
            reasons.append("manipulative behavior detected")

        if signal.sentiment == Sentiment.POSITIVE and signal.toxicity < policy.positive_max_toxicity:
            delta += policy.positive_delta
            reasons.append("positive contribution")

        ctx = dict(context or {})
        ctx.update({
            "toxicity": round(signal.toxicity, 3),
            "manipulation": round(signal.manipulation, 3),
        })
        return self.apply_delta(
            user_id, delta, ", ".join(reasons) or "message analyzed", ctx, now,
        )

    def recommend_action(
        self,
        score: float,
        toxicity: float = 0.0,
        manipulation: float = 0.0,
    ) -> tuple[Optional[ActionKind], str]:
        """Suggest an action from trust plus the current message.

        Low trust alone never acts: the current message must also be bad.
        """
        t = self._resolver.action_thresholds()
        bad = toxicity > t.bad_message_toxicity or manipulation > t.bad_message_manipulation
        if not bad:
            return None, ""
        if score <= t.ban:
            return ActionKind.BAN, f"Trust score critically low ({score:g}) + toxic behavior"
        if score <= t.timeout:
            return ActionKind.TIMEOUT, f"Trust score low ({score:g}) + toxic behavior"
        if score <= t.warn:
            return ActionKind.WARN, f"Trust score concerning ({score:g}) + problematic behavior"
        return None, ""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_locked(self, user_id: str) -> bool:
        return self.get_score(user_id).permanently_locked

    def redemption_progress(self, user_id: str) -> RedemptionProgress:
        policy = self._resolver.redemption_policy()
        target = self._bounds.default_score
        record = self.get_score(user_id)
        if record.permanently_locked:
            return RedemptionProgress(
                can_redeem=False,
                current_score=record.score,
                target_score=target,
                points_needed=0,
                recent_good_behaviors=0,
                suggestion="Permanent ban - no redemption possible",
            )
        recent = record.history[-policy.history_window:]
        good = sum(1 for e in recent if e.delta > 0 and e.reason.startswith("Redemption"))
        if record.score < target * 0.6:
            suggestion = "Be helpful, positive, and avoid toxicity. Every good message helps!"
        elif record.score < target:
            suggestion = "Keep up the good behavior! You're making progress."
        else:
            suggestion = "Trust score is healthy. Continue being a positive community member!"
        return RedemptionProgress(
            can_redeem=record.score < policy.eligibility_ceiling,
            current_score=record.score,
            target_score=target,
            points_needed=max(0.0, target - record.score),
            recent_good_behaviors=good,
            suggestion=suggestion,
        )

    def users_by_level(self, level: TrustLevel) -> list[TrustScore]:
        return [s for s in self._all_snapshots() if s.level == level]

    def top_users(self, limit: int = 10) -> list[TrustScore]:
        return sorted(self._all_snapshots(), key=lambda s: s.score, reverse=True)[:limit]

    def stats(self) -> dict[str, Any]:
        snapshots = self._all_snapshots()
        by_level = {level.value: 0 for level in TrustLevel}
        for s in snapshots:
            by_level[s.level.value] += 1
        total = len(snapshots)
        return {
            "total": total,
            "average_score": sum(s.score for s in snapshots) / total if total else 0.0,
            "locked": sum(1 for s in snapshots if s.permanently_locked),
            "by_level": by_level,
        }

    def report(self, user_id: str, recent: int = 10) -> str:
        record = self.get_score(user_id)
        lines = [
            f"Trust Report for {user_id}",
            f"Score: {record.score:g} ({record.level.value})"
            + (" [PERMANENTLY LOCKED]" if record.permanently_locked else ""),
            f"Member since: {record.joined_at.date().isoformat()}",
            f"Last activity: {record.last_updated.date().isoformat()}",
            "",
            "Recent History:",
        ]
        for event in record.history[-recent:]:
            sign = "+" if event.delta >= 0 else ""
            lines.append(f"- {event.timestamp.isoformat()}: {event.reason} ({sign}{event.delta:g})")
        return "\n".join(lines)

    def load_all(self) -> int:
        """Hydrate every persisted score into memory. Returns the count."""
        if self._store is None:
            return 0
        loaded = 0
        for key in self._store.keys(_KEY_PREFIX):
            user_id = key[len(_KEY_PREFIX):]
            with self._locks.hold(user_id):
                if user_id in self._records:
                    continue
                data = self._store.get(key)
                if data is None:
                    continue
                with self._index_lock:
                    self._records[user_id] = codec.trust_score_from_dict(data)
                loaded += 1
        return loaded

    # ------------------------------------------------------------------
    # Internals (callers hold the user's lock)
    # ------------------------------------------------------------------

    def _apply(
        self,
        record: TrustScore,
        delta: float,
        reason: str,
        context: dict[str, Any],
        now: datetime,
    ) -> Optional[TrustEvent]:
        if record.permanently_locked and delta > 0:
            logger.warning(
                "Blocked trust increase of %s for permanently locked user %s",
                delta, record.user_id,
            )
            return None

        before = record.score
        if record.permanently_locked:
            after = self._bounds.min_score
        else:
            after = self._bounds.clamp(before + delta)
        record.score = after
        record.level = self._resolver.trust_level(after)
        record.last_updated = now

        event = TrustEvent(
            timestamp=now,
            delta=delta,
            reason=reason,
            context=dict(context),
            score_before=before,
            score_after=after,
        )
        self._append_history(record, event)
        self._persist(record)
        self._emit(EventKind.TRUST_UPDATED, record, event)
        logger.debug(
            "Trust updated: %s %g -> %g (%+g) - %s",
            record.user_id, before, after, delta, reason,
        )
        return event

    def _load(self, user_id: str, now: datetime) -> TrustScore:
        record = self._records.get(user_id)
        if record is not None:
            return record

        if self._store is not None:
            try:
                data = self._store.get(_KEY_PREFIX + user_id)
            except Exception:
                logger.error("Failed to read trust score for %s", user_id, exc_info=True)
                data = None
            if data is not None:
                record = codec.trust_score_from_dict(data)

        if record is None:
            default = self._bounds.default_score
            record = TrustScore(
                user_id=user_id,
                score=default,
                level=self._resolver.trust_level(default),
                last_updated=now,
                joined_at=now,
            )
            self._persist(record)

        with self._index_lock:
            self._records[user_id] = record
        return record

    def _append_history(self, record: TrustScore, event: TrustEvent) -> None:
        record.history.append(event)
        overflow = len(record.history) - self._bounds.history_limit
        if overflow > 0:
            del record.history[:overflow]

    def _persist(self, record: TrustScore) -> None:
        if self._store is None:
            return
        try:
            self._store.put(_KEY_PREFIX + record.user_id, codec.trust_score_to_dict(record))
        except Exception:
            logger.error("Failed to persist trust score for %s", record.user_id, exc_info=True)

    def _emit(self, kind: EventKind, record: TrustScore, event: TrustEvent) -> None:
        if self._event_log is None:
            return
        payload = codec.trust_event_to_dict(event)
        payload["level"] = record.level.value
        payload["permanently_locked"] = record.permanently_locked
        self._event_log.emit(kind, record.user_id, payload, timestamp_utc=event.timestamp)

    def _all_snapshots(self) -> list[TrustScore]:
        with self._index_lock:
            user_ids = list(self._records)
        snapshots = []
        for user_id in user_ids:
            with self._locks.hold(user_id):
                record = self._records.get(user_id)
                if record is not None:
                    snapshots.append(record.snapshot())
        return snapshots
