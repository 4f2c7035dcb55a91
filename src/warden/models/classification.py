"""Classifier verdicts and behavioural signals.

The engine never parses natural language itself. It receives typed
verdicts from an external classifier and per-message behaviour signals
from upstream analysis, and reasons only about those.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class Verdict(str, enum.Enum):
    """Binary outcome of a delegated classification."""
    FLAGGED = "flagged"
    CLEAR = "clear"


@dataclass(frozen=True)
class ClassificationResult:
    """What an external classifier returns for one (content, category) call.

    ``score`` carries a continuous reading where the category needs one
    (e.g. sentiment in [-1, 1] for trend tracking); None otherwise.
    """
    verdict: Verdict
    confidence: float
    evidence: str = ""
    score: Optional[float] = None

    @property
    def flagged(self) -> bool:
        return self.verdict == Verdict.FLAGGED


class Sentiment(str, enum.Enum):
    """Dominant sentiment of a message."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class BehaviorSignal:
    """Per-message behaviour analysis used for trust scoring and redemption.

    toxicity and manipulation are probabilities in [0, 1].
    """
    toxicity: float = 0.0
    manipulation: float = 0.0
    sentiment: Sentiment = Sentiment.NEUTRAL
    is_helpful: bool = False


class CoreViolationType(str, enum.Enum):
    """Universal violations that affect global trust regardless of scope."""
    PROFANITY = "profanity"
    HATE_SPEECH = "hate_speech"
    HARASSMENT = "harassment"
    SPAM = "spam"
    SCAM = "scam"
    EXPLICIT_CONTENT = "explicit_content"
    DOXXING = "doxxing"
    RAIDING = "raiding"
    IMPERSONATION = "impersonation"


class ViolationSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ViolationFinding:
    """One core violation reported by a violation detector."""
    violation_type: CoreViolationType
    severity: ViolationSeverity
    confidence: float
    evidence: str = ""


@dataclass(frozen=True)
class ConditionResult:
    """Uniform answer of a condition check.

    A failed or unavailable check is ``triggered=False, confidence=0``.
    """
    triggered: bool
    evidence: str = ""
    confidence: float = 0.0


NOT_TRIGGERED = ConditionResult(triggered=False)
