"""Core data models for the reputation and escalation engine."""

from warden.models.trust import TrustEvent, TrustLevel, TrustScore
from warden.models.violation import Evidence, ViolationRecord
from warden.models.enforcement import ActionKind, ExecutionResult, ExecutionStatus
from warden.models.classification import (
    BehaviorSignal,
    ClassificationResult,
    Verdict,
)
from warden.models.watch import (
    ActionCondition,
    BehavioralEvent,
    ConditionalAction,
    ConditionType,
    EscalationConfig,
    EscalationStage,
    TargetFilter,
    TargetSelector,
    TriggerEvent,
    WatchCondition,
    WatchConfig,
)

__all__ = [
    "TrustEvent",
    "TrustLevel",
    "TrustScore",
    "Evidence",
    "ViolationRecord",
    "ActionKind",
    "ExecutionResult",
    "ExecutionStatus",
    "BehaviorSignal",
    "ClassificationResult",
    "Verdict",
    "ActionCondition",
    "BehavioralEvent",
    "ConditionalAction",
    "ConditionType",
    "EscalationConfig",
    "EscalationStage",
    "TargetFilter",
    "TargetSelector",
    "TriggerEvent",
    "WatchCondition",
    "WatchConfig",
]
