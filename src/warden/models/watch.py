"""Watch rule configuration, behavioural events and trigger events.

A watch is a time-bounded monitoring rule: who to watch (target
selector), what to watch for (conditions), and what to do on a trigger
(default conditional actions, or an escalation ladder). Configuration
types are frozen; only ``WatchConfig.active`` and ``trigger_count``
change after creation, and ``active`` only ever goes true -> false.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from warden.models.classification import BehaviorSignal
from warden.models.enforcement import ActionKind, ExecutionResult


class ConditionType(str, enum.Enum):
    """What a watch condition looks for."""
    FUD_DETECTION = "fud_detection"
    NEGATIVE_SENTIMENT = "negative_sentiment"
    SPAM_DETECTION = "spam_detection"
    TOXICITY = "toxicity"
    TRUST_DROP = "trust_drop"
    VIOLATION_COUNT = "violation_count"
    CUSTOM_KEYWORD = "custom_keyword"
    SENTIMENT_TREND = "sentiment_trend"
    MESSAGE_VELOCITY = "message_velocity"


@dataclass(frozen=True)
class WatchCondition:
    """Pure configuration; thresholds default from engine_params.json."""
    type: ConditionType
    description: str = ""
    threshold: Optional[float] = None
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class TargetFilter:
    """Declarative member filter. Every set predicate must hold."""
    trust_score_min: Optional[float] = None
    trust_score_max: Optional[float] = None
    has_role: Optional[str] = None
    lacks_role: Optional[str] = None
    joined_within_days: Optional[float] = None

    @property
    def needs_member(self) -> bool:
        return (
            self.has_role is not None
            or self.lacks_role is not None
            or self.joined_within_days is not None
        )


@dataclass(frozen=True)
class TargetSelector:
    """Explicit user ids, a declarative filter, or both (either matches)."""
    user_ids: frozenset[str] = frozenset()
    filter: Optional[TargetFilter] = None


class ActionConditionType(str, enum.Enum):
    TRUST_SCORE = "trust_score"
    VIOLATION_COUNT = "violation_count"
    USER_AGE_DAYS = "user_age_days"
    MESSAGE_COUNT = "message_count"
    ALWAYS = "always"


class Operator(str, enum.Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="
    NE = "!="


@dataclass(frozen=True)
class ActionCondition:
    """Runtime predicate guarding a conditional action."""
    type: ActionConditionType
    operator: Optional[Operator] = None
    value: Optional[float] = None


@dataclass(frozen=True)
class ConditionalAction:
    """Binary action tree node.

    If ``condition`` is absent or holds, ``action`` runs. Otherwise the
    ``else_action`` subtree is evaluated; without one, nothing happens.
    """
    action: ActionKind
    parameters: dict[str, Any] = field(default_factory=dict)
    condition: Optional[ActionCondition] = None
    else_action: Optional[ConditionalAction] = None


@dataclass(frozen=True)
class EscalationStage:
    violation_count: int
    action: ActionKind
    parameters: dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass(frozen=True)
class EscalationConfig:
    """Escalation ladder. Stages are kept sorted by violation_count."""
    stages: tuple[EscalationStage, ...]
    reset_after_hours: Optional[float] = None
    enabled: bool = True


@dataclass
class WatchConfig:
    """One active monitoring rule within a scope (guild)."""
    watch_id: str
    scope_id: str
    created_at: datetime
    expires_at: datetime
    target: TargetSelector
    conditions: tuple[WatchCondition, ...]
    actions: tuple[ConditionalAction, ...] = ()
    escalation: Optional[EscalationConfig] = None
    created_by: Optional[str] = None
    trigger_count: int = 0
    active: bool = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def is_live(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)

    @property
    def escalation_enabled(self) -> bool:
        return self.escalation is not None and self.escalation.enabled


@dataclass(frozen=True)
class BehavioralEvent:
    """One user action with its content, as delivered by the platform."""
    event_id: str
    user_id: str
    scope_id: str
    content: str
    timestamp: datetime
    mention_count: int = 0
    channel_id: Optional[str] = None
    signal: Optional[BehaviorSignal] = None


@dataclass(frozen=True)
class TriggerEvent:
    """Emitted once per (watch, condition) that fired for an event."""
    watch_id: str
    user_id: str
    condition_type: ConditionType
    evidence: str
    confidence: float
    timestamp: datetime
    violation_count: int = 0
    stage: Optional[EscalationStage] = None
    results: tuple[ExecutionResult, ...] = ()
