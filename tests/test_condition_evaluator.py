"""Tests for the condition evaluator — proves every condition type and its fallback."""

import threading
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from warden.conditions.classifier import BoundedClassifier
from warden.conditions.evaluator import ConditionEvaluator
from warden.conditions.heuristics import SentimentTracker, VelocityTracker, spam_check
from warden.errors import ClassifierError
from warden.escalation.tracker import ViolationTracker
from warden.models.classification import (
    BehaviorSignal,
    ClassificationResult,
    Sentiment,
    Verdict,
)
from warden.models.violation import Evidence
from warden.models.watch import BehavioralEvent, ConditionType, WatchCondition
from warden.policy.resolver import PolicyResolver
from warden.trust.ledger import TrustLedger

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


class _FakeClassifier:
    """Answers from a per-type table; sentiment readings keyed by content."""

    def __init__(self, answers=None, sentiments=None) -> None:
        self.answers = answers or {}
        self.sentiments = sentiments or {}
        self.calls = []

    def classify(self, content, condition_type):
        self.calls.append((content, condition_type))
        if condition_type == ConditionType.SENTIMENT_TREND:
            return ClassificationResult(Verdict.CLEAR, 1.0, score=self.sentiments.get(content, 0.0))
        return self.answers.get(condition_type, ClassificationResult(Verdict.CLEAR, 0.0))


class _BrokenClassifier:
    def classify(self, content, condition_type):
        raise ConnectionError("classifier offline")


def _event(content="hello", event_id="e1", user="u1", ts=T0, mentions=0, signal=None):
    return BehavioralEvent(
        event_id=event_id,
        user_id=user,
        scope_id="guild-1",
        content=content,
        timestamp=ts,
        mention_count=mentions,
        signal=signal,
    )


def _flag(confidence, evidence=""):
    return ClassificationResult(Verdict.FLAGGED, confidence, evidence)


class TestClassifierConditions:
    def test_toxicity_flagged_above_threshold(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier({ConditionType.TOXICITY: _flag(0.9, "slur")})
        ev = ConditionEvaluator(resolver, classifier=clf)
        result = ev.check(_event("..."), WatchCondition(ConditionType.TOXICITY))
        assert result.triggered
        assert result.confidence == 0.9
        assert result.evidence == "slur"
        ev.close()

    def test_toxicity_below_threshold(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier({ConditionType.TOXICITY: _flag(0.6)})
        ev = ConditionEvaluator(resolver, classifier=clf)
        assert not ev.check(_event(), WatchCondition(ConditionType.TOXICITY)).triggered
        assert ev.check(_event(), WatchCondition(ConditionType.TOXICITY, threshold=0.5)).triggered
        ev.close()

    def test_clear_verdict_never_triggers(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier({ConditionType.FUD_DETECTION: ClassificationResult(Verdict.CLEAR, 0.99)})
        ev = ConditionEvaluator(resolver, classifier=clf)
        assert not ev.check(_event("scam!"), WatchCondition(ConditionType.FUD_DETECTION)).triggered
        ev.close()

    def test_negative_sentiment_is_strict(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier({ConditionType.NEGATIVE_SENTIMENT: _flag(0.6)})
        ev = ConditionEvaluator(resolver, classifier=clf)
        assert not ev.check(_event(), WatchCondition(ConditionType.NEGATIVE_SENTIMENT)).triggered
        ev.close()

    def test_one_classifier_call_per_event_across_watches(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier({ConditionType.TOXICITY: _flag(0.9)})
        ev = ConditionEvaluator(resolver, classifier=clf)
        condition = WatchCondition(ConditionType.TOXICITY)
        assert ev.check(_event("rude", event_id="e1"), condition, watch_id="w1").triggered
        assert ev.check(_event("rude", event_id="e1"), condition, watch_id="w2").triggered
        assert len(clf.calls) == 1
        ev.check(_event("rude", event_id="e2"), condition, watch_id="w1")
        ev.check(_event("rude", event_id="e1"), WatchCondition(ConditionType.FUD_DETECTION))
        assert len(clf.calls) == 3
        ev.close()

    def test_failed_call_not_repeated_for_same_event(self, resolver: PolicyResolver) -> None:
        calls = []

        class _Offline:
            def classify(self, content, condition_type):
                calls.append(condition_type)
                raise ConnectionError("classifier offline")

        ev = ConditionEvaluator(resolver, classifier=_Offline())
        condition = WatchCondition(ConditionType.TOXICITY)
        for watch_id in ("w1", "w2", "w3"):
            assert ev.check(_event("idiot", event_id="e1"), condition, watch_id=watch_id).triggered
        assert calls == [ConditionType.TOXICITY]
        ev.close()


class TestFallbacks:
    def test_toxicity_keyword_fallback(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver, classifier=_BrokenClassifier())
        result = ev.check(_event("you are an IDIOT"), WatchCondition(ConditionType.TOXICITY))
        assert result.triggered
        assert result.confidence == 0.9
        assert "fallback" in result.evidence
        ev.close()

    def test_fud_keyword_fallback(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        result = ev.check(_event("this is a rug pull"), WatchCondition(ConditionType.FUD_DETECTION))
        assert result.triggered
        assert result.confidence == 0.6

    def test_fud_fallback_respects_threshold(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.FUD_DETECTION, threshold=0.8)
        assert not ev.check(_event("ponzi"), condition).triggered

    def test_negative_sentiment_has_no_fallback(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver, classifier=_BrokenClassifier())
        result = ev.check(_event("I hate this"), WatchCondition(ConditionType.NEGATIVE_SENTIMENT))
        assert not result.triggered
        assert result.confidence == 0.0
        ev.close()

    def test_clean_content_not_triggered_by_fallback(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        assert not ev.check(_event("good morning"), WatchCondition(ConditionType.TOXICITY)).triggered

    def test_handler_crash_is_contained(self, resolver: PolicyResolver) -> None:
        class _ExplodingLedger:
            def get_score(self, user_id):
                raise RuntimeError("boom")

        ev = ConditionEvaluator(resolver, ledger=_ExplodingLedger())
        result = ev.check(_event(), WatchCondition(ConditionType.TRUST_DROP))
        assert not result.triggered


class TestBoundedClassifier:
    def test_timeout_becomes_classifier_error(self) -> None:
        release = threading.Event()

        class _Slow:
            def classify(self, content, condition_type):
                release.wait(2.0)
                return ClassificationResult(Verdict.CLEAR, 0.0)

        bounded = BoundedClassifier(_Slow(), timeout=0.05)
        try:
            with pytest.raises(ClassifierError, match="timed out"):
                bounded.classify("x", ConditionType.TOXICITY)
        finally:
            release.set()
            bounded.close()

    @pytest.mark.parametrize("answer", [
        "flagged",
        ClassificationResult(Verdict.FLAGGED, 1.5),
        ClassificationResult(Verdict.CLEAR, 0.5, score=-3.0),
    ])
    def test_malformed_answers_rejected(self, answer) -> None:
        class _Odd:
            def classify(self, content, condition_type):
                return answer

        bounded = BoundedClassifier(_Odd(), timeout=1.0)
        with pytest.raises(ClassifierError):
            bounded.classify("x", ConditionType.TOXICITY)
        bounded.close()

    def test_malformed_answer_falls_back_in_evaluator(self, resolver: PolicyResolver) -> None:
        class _Odd:
            def classify(self, content, condition_type):
                return {"toxic": True}

        ev = ConditionEvaluator(resolver, classifier=_Odd())
        assert ev.check(_event("shit"), WatchCondition(ConditionType.TOXICITY)).triggered
        ev.close()


class TestLocalConditions:
    def test_custom_keyword_case_insensitive(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.CUSTOM_KEYWORD, keywords=("Moon Soon",))
        result = ev.check(_event("wen MOON SOON ser"), condition)
        assert result.triggered
        assert result.confidence == 1.0
        assert result.evidence == 'Keyword match: "Moon Soon"'
        assert not ev.check(_event("nothing here"), condition).triggered

    def test_spam_caps(self, resolver: PolicyResolver) -> None:
        policy = resolver.heuristic_policy()
        result = spam_check("BUY NOW BUY NOW", 0, policy)
        assert result.triggered
        assert result.confidence == 0.8
        assert not spam_check("HI THERE", 0, policy).triggered

    def test_spam_repeated_characters(self, resolver: PolicyResolver) -> None:
        result = spam_check("nooooooo", 0, resolver.heuristic_policy())
        assert result.confidence == 0.9
        assert not spam_check("nooooo", 0, resolver.heuristic_policy()).triggered

    def test_spam_mass_mentions(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.SPAM_DETECTION)
        assert ev.check(_event("hey all", mentions=6), condition).confidence == 0.95
        assert not ev.check(_event("hey all", mentions=5), condition).triggered

    def test_trust_drop(self, resolver: PolicyResolver) -> None:
        ledger = TrustLedger(resolver)
        ev = ConditionEvaluator(resolver, ledger=ledger)
        condition = WatchCondition(ConditionType.TRUST_DROP, threshold=40)
        assert not ev.check(_event(), condition).triggered
        ledger.apply_delta("u1", -15, "abuse")
        result = ev.check(_event(), condition)
        assert result.triggered
        assert result.confidence == 1.0

    def test_violation_count_uses_watch_records(self, resolver: PolicyResolver) -> None:
        tracker = ViolationTracker(resolver)
        ev = ConditionEvaluator(resolver, tracker=tracker)
        condition = WatchCondition(ConditionType.VIOLATION_COUNT, threshold=2)
        assert not ev.check(_event(), condition, watch_id="w1").triggered
        for i in range(2):
            tracker.record("w1", "u1", Evidence(T0 + timedelta(minutes=i), "toxicity", "x"))
        assert ev.check(_event(), condition, watch_id="w1").triggered
        assert not ev.check(_event(), condition, watch_id="w2").triggered
        assert not ev.check(_event(), condition).triggered


class TestVelocity:
    def test_triggers_above_threshold(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.MESSAGE_VELOCITY, threshold=3)
        results = [
            ev.check(_event(event_id=f"e{i}", ts=T0 + timedelta(seconds=i)), condition)
            for i in range(4)
        ]
        assert [r.triggered for r in results] == [False, False, False, True]
        assert results[-1].confidence == pytest.approx(4 / 6)
        assert "4 messages in last 60 seconds" in results[-1].evidence

    def test_window_slides(self) -> None:
        tracker = VelocityTracker(window_seconds=60, buffer_size=50)
        for i in range(5):
            tracker.observe("u1", f"e{i}", T0 + timedelta(seconds=i))
        assert tracker.observe("u1", "late", T0 + timedelta(seconds=64)) == 2

    def test_same_event_counted_once(self) -> None:
        tracker = VelocityTracker(window_seconds=60, buffer_size=50)
        tracker.observe("u1", "e1", T0)
        assert tracker.observe("u1", "e1", T0) == 1

    def test_confidence_capped(self) -> None:
        tracker = VelocityTracker(window_seconds=60, buffer_size=50)
        for i in range(20):
            result = tracker.check("u1", f"e{i}", T0 + timedelta(seconds=i), 2)
        assert result.confidence == 1.0


class TestSentimentTrend:
    def test_declining_mood_triggers(self, resolver: PolicyResolver) -> None:
        sentiments = {f"good{i}": 0.8 for i in range(4)}
        sentiments.update({f"bad{i}": -0.6 for i in range(3)})
        ev = ConditionEvaluator(resolver, classifier=_FakeClassifier(sentiments=sentiments))
        condition = WatchCondition(ConditionType.SENTIMENT_TREND)
        contents = [f"good{i}" for i in range(4)] + [f"bad{i}" for i in range(3)]
        for i, content in enumerate(contents):
            result = ev.check(_event(content, event_id=f"e{i}"), condition)
        assert result.triggered
        assert result.confidence == 1.0
        assert "0.80 -> -0.60" in result.evidence
        ev.close()

    def test_needs_minimum_samples(self) -> None:
        tracker = SentimentTracker(window=10, recent=3, min_samples=4)
        for i, value in enumerate((0.9, -0.9, -0.9)):
            tracker.observe("u1", f"e{i}", value)
        assert tracker.trend("u1") is None
        assert not tracker.check("u1", -0.3).triggered

    def test_stable_mood_does_not_trigger(self) -> None:
        tracker = SentimentTracker(window=10, recent=3, min_samples=4)
        for i in range(6):
            tracker.observe("u1", f"e{i}", 0.2)
        assert not tracker.check("u1", -0.3).triggered

    def test_signal_sentiment_used_without_classifier(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.SENTIMENT_TREND)
        moods = [Sentiment.POSITIVE] * 3 + [Sentiment.NEGATIVE] * 3
        for i, mood in enumerate(moods):
            event = _event("msg", event_id=f"e{i}", signal=BehaviorSignal(sentiment=mood))
            result = ev.check(event, condition)
        assert result.triggered

    def test_one_event_counted_once_across_watches(self, resolver: PolicyResolver) -> None:
        clf = _FakeClassifier(sentiments={"x": 0.5})
        ev = ConditionEvaluator(resolver, classifier=clf)
        condition = WatchCondition(ConditionType.SENTIMENT_TREND)
        ev.check(_event("x", event_id="e1"), condition, watch_id="w1")
        ev.check(_event("x", event_id="e1"), condition, watch_id="w2")
        assert len(clf.calls) == 1
        ev.close()

    def test_forget_user_clears_buffers(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        condition = WatchCondition(ConditionType.MESSAGE_VELOCITY, threshold=1)
        ev.check(_event(event_id="a"), condition)
        ev.forget_user("u1")
        assert not ev.check(_event(event_id="b"), condition).triggered


class TestBufferPruning:
    def test_idle_velocity_buffers_dropped(self) -> None:
        tracker = VelocityTracker(window_seconds=60, buffer_size=50)
        tracker.observe("idle", "e1", T0)
        tracker.observe("busy", "e2", T0 + timedelta(hours=5))
        assert tracker.prune(T0 + timedelta(hours=1)) == 1
        assert len(tracker) == 1
        assert tracker.observe("busy", "e3", T0 + timedelta(hours=5, seconds=1)) == 2

    def test_idle_sentiment_buffers_dropped(self) -> None:
        tracker = SentimentTracker(window=10, recent=3, min_samples=4)
        tracker.observe("idle", "e1", 0.5, T0)
        tracker.observe("busy", "e2", 0.5, T0 + timedelta(hours=5))
        assert tracker.prune(T0 + timedelta(hours=1)) == 1
        assert len(tracker) == 1
        assert not tracker.seen("idle", "e1")

    def test_evaluator_prunes_after_idle_window(self, resolver: PolicyResolver) -> None:
        ev = ConditionEvaluator(resolver)
        velocity = WatchCondition(ConditionType.MESSAGE_VELOCITY)
        trend = WatchCondition(ConditionType.SENTIMENT_TREND)
        for i in range(50):
            event = _event(
                "msg", event_id=f"e{i}", user=f"u{i}",
                signal=BehaviorSignal(sentiment=Sentiment.NEUTRAL),
            )
            ev.check(event, velocity)
            ev.check(event, trend)
        assert ev.prune(T0 + timedelta(hours=1)) == 0
        assert ev.prune(T0 + timedelta(days=2)) == 100
        assert len(ev._velocity) == 0
        assert len(ev._sentiment) == 0
