"""Condition evaluator — one uniform check contract over every condition type.

Each ConditionType maps to exactly one handler, registered once at
construction. Classifier-backed handlers degrade to a deterministic
local fallback on classifier failure (each event is classified at most
once per condition type); handlers without a safe fallback
return triggered=False, confidence=0. No handler failure escapes
``check``.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Optional

from warden.conditions.classifier import BoundedClassifier, Classifier
from warden.conditions.heuristics import (
    SentimentTracker,
    VelocityTracker,
    fud_fallback,
    keyword_condition,
    spam_check,
    toxicity_fallback,
)
from warden.errors import ClassifierError
from warden.escalation.tracker import ViolationTracker
from warden.models.classification import (
    NOT_TRIGGERED,
    ClassificationResult,
    ConditionResult,
    Sentiment,
)
from warden.models.watch import BehavioralEvent, ConditionType, WatchCondition
from warden.policy.resolver import PolicyResolver
from warden.trust.ledger import TrustLedger

logger = logging.getLogger(__name__)

Handler = Callable[[BehavioralEvent, WatchCondition, float, Optional[str]], ConditionResult]

_SIGNAL_SENTIMENT = {
    Sentiment.POSITIVE: 1.0,
    Sentiment.NEUTRAL: 0.0,
    Sentiment.NEGATIVE: -1.0,
}

# Classifier answers kept per (event_id, condition type, content).
_MEMO_SIZE = 512


class ConditionEvaluator:
    """Checks watch conditions against behavioural events.

    Usage:
        evaluator = ConditionEvaluator(resolver, classifier=clf, ledger=ledger, tracker=tracker)
        result = evaluator.check(event, condition, watch_id="watch-1")
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        classifier: Optional[Classifier] = None,
        ledger: Optional[TrustLedger] = None,
        tracker: Optional[ViolationTracker] = None,
    ) -> None:
        self._resolver = resolver
        self._policy = resolver.heuristic_policy()
        self._classifier = None
        if classifier is not None:
            self._classifier = BoundedClassifier(
                classifier,
                timeout=resolver.classifier_timeout(),
                max_workers=resolver.classifier_workers(),
            )
        self._ledger = ledger
        self._tracker = tracker
        self._velocity = VelocityTracker(
            self._policy.velocity_window_seconds, self._policy.velocity_buffer_size,
        )
        self._sentiment = SentimentTracker(
            self._policy.sentiment_window,
            self._policy.sentiment_recent,
            self._policy.sentiment_min_samples,
        )
        self._handlers: dict[ConditionType, Handler] = {
            ConditionType.TOXICITY: self._check_toxicity,
            ConditionType.FUD_DETECTION: self._check_fud,
            ConditionType.NEGATIVE_SENTIMENT: self._check_negative_sentiment,
            ConditionType.SPAM_DETECTION: self._check_spam,
            ConditionType.TRUST_DROP: self._check_trust_drop,
            ConditionType.VIOLATION_COUNT: self._check_violation_count,
            ConditionType.CUSTOM_KEYWORD: self._check_keywords,
            ConditionType.SENTIMENT_TREND: self._check_sentiment_trend,
            ConditionType.MESSAGE_VELOCITY: self._check_velocity,
        }
        self._memo: OrderedDict[tuple, Optional[ClassificationResult]] = OrderedDict()
        self._memo_lock = threading.Lock()
        missing = set(ConditionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for condition types: {sorted(m.value for m in missing)}")

    def check(
        self,
        event: BehavioralEvent,
        condition: WatchCondition,
        watch_id: Optional[str] = None,
    ) -> ConditionResult:
        threshold = condition.threshold
        if threshold is None:
            threshold = self._resolver.default_threshold(condition.type)
        if threshold is None:
            threshold = 0.0
        handler = self._handlers[condition.type]
        try:
            result = handler(event, condition, threshold, watch_id)
        except Exception:
            logger.error(
                "Condition %s failed for %s", condition.type.value, event.user_id, exc_info=True,
            )
            return NOT_TRIGGERED
        logger.debug(
            "Condition %s for %s: triggered=%s confidence=%.2f",
            condition.type.value, event.user_id, result.triggered, result.confidence,
        )
        return result

    def forget_user(self, user_id: str) -> None:
        """Drop a user's heuristic buffers."""
        self._velocity.forget(user_id)
        self._sentiment.forget(user_id)

    def prune(self, now: datetime) -> int:
        """Drop heuristic buffers of users idle longer than the configured window."""
        cutoff = now - timedelta(seconds=self._policy.buffer_idle_seconds)
        dropped = self._velocity.prune(cutoff) + self._sentiment.prune(cutoff)
        if dropped:
            logger.debug("Pruned %d idle heuristic buffers", dropped)
        return dropped

    def close(self) -> None:
        if self._classifier is not None:
            self._classifier.close()

    # ------------------------------------------------------------------
    # Classifier-backed handlers
    # ------------------------------------------------------------------

    def _classify(self, event: BehavioralEvent, ctype: ConditionType) -> Optional[ClassificationResult]:
        """One classifier call per (event, type), shared by every watch.

        A failed call is remembered too, so later watches go straight to
        the fallback instead of waiting out another timeout.
        """
        if self._classifier is None:
            return None
        key = (event.event_id, ctype, event.content)
        with self._memo_lock:
            if key in self._memo:
                return self._memo[key]
        try:
            result = self._classifier.classify(event.content, ctype)
        except ClassifierError as exc:
            logger.warning("Classifier unavailable, using fallback: %s", exc)
            result = None
        with self._memo_lock:
            self._memo[key] = result
            while len(self._memo) > _MEMO_SIZE:
                self._memo.popitem(last=False)
        return result

    def _check_toxicity(self, event, condition, threshold, watch_id) -> ConditionResult:
        result = self._classify(event, ConditionType.TOXICITY)
        if result is None:
            return toxicity_fallback(event.content, threshold)
        if result.flagged and result.confidence >= threshold:
            return ConditionResult(True, result.evidence or "Toxic language detected", result.confidence)
        return NOT_TRIGGERED

    def _check_fud(self, event, condition, threshold, watch_id) -> ConditionResult:
        result = self._classify(event, ConditionType.FUD_DETECTION)
        if result is None:
            return fud_fallback(event.content, threshold)
        if result.flagged and result.confidence >= threshold:
            return ConditionResult(True, result.evidence or "FUD detected", result.confidence)
        return NOT_TRIGGERED

    def _check_negative_sentiment(self, event, condition, threshold, watch_id) -> ConditionResult:
        result = self._classify(event, ConditionType.NEGATIVE_SENTIMENT)
        if result is None:
            return NOT_TRIGGERED
        if result.flagged and result.confidence > threshold:
            return ConditionResult(True, result.evidence or "Negative sentiment", result.confidence)
        return NOT_TRIGGERED

    def _check_sentiment_trend(self, event, condition, threshold, watch_id) -> ConditionResult:
        if not self._sentiment.seen(event.user_id, event.event_id):
            reading = self._sentiment_reading(event)
            if reading is not None:
                self._sentiment.observe(event.user_id, event.event_id, reading, event.timestamp)
        return self._sentiment.check(event.user_id, threshold)

    def _sentiment_reading(self, event: BehavioralEvent) -> Optional[float]:
        result = self._classify(event, ConditionType.SENTIMENT_TREND)
        if result is not None and result.score is not None:
            return result.score
        if event.signal is not None:
            return _SIGNAL_SENTIMENT[event.signal.sentiment]
        return None

    # ------------------------------------------------------------------
    # Local handlers
    # ------------------------------------------------------------------

    def _check_spam(self, event, condition, threshold, watch_id) -> ConditionResult:
        return spam_check(event.content, event.mention_count, self._policy)

    def _check_keywords(self, event, condition, threshold, watch_id) -> ConditionResult:
        return keyword_condition(event.content, condition.keywords)

    def _check_velocity(self, event, condition, threshold, watch_id) -> ConditionResult:
        return self._velocity.check(event.user_id, event.event_id, event.timestamp, threshold)

    def _check_trust_drop(self, event, condition, threshold, watch_id) -> ConditionResult:
        if self._ledger is None:
            return NOT_TRIGGERED
        score = self._ledger.get_score(event.user_id).score
        if score < threshold:
            return ConditionResult(True, f"Trust score {score:g} below threshold {threshold:g}", 1.0)
        return NOT_TRIGGERED

    def _check_violation_count(self, event, condition, threshold, watch_id) -> ConditionResult:
        if self._tracker is None or watch_id is None:
            return NOT_TRIGGERED
        count = self._tracker.count(watch_id, event.user_id)
        if count >= threshold:
            return ConditionResult(
                True, f"{count} violations recorded (threshold {threshold:g})", 1.0,
            )
        return NOT_TRIGGERED
