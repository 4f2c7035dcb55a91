"""Structured serialization of the data model.

Plain dicts with ISO-8601 UTC timestamps and enum values, suitable for
JSON. Every ``*_from_dict`` is strict: missing keys or unknown enum
values raise KeyError / ValueError, which callers translate into their
own error type.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from warden.models.enforcement import ActionKind
from warden.models.trust import TrustEvent, TrustLevel, TrustScore
from warden.models.violation import Evidence, ViolationRecord
from warden.models.watch import (
    ActionCondition,
    ActionConditionType,
    ConditionalAction,
    ConditionType,
    EscalationConfig,
    EscalationStage,
    Operator,
    TargetFilter,
    TargetSelector,
    WatchCondition,
    WatchConfig,
)


def dump_dt(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def load_dt(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ----------------------------------------------------------------------
# Trust
# ----------------------------------------------------------------------

def trust_event_to_dict(event: TrustEvent) -> dict[str, Any]:
    return {
        "timestamp": dump_dt(event.timestamp),
        "delta": event.delta,
        "reason": event.reason,
        "context": dict(event.context),
        "score_before": event.score_before,
        "score_after": event.score_after,
    }


def trust_event_from_dict(data: dict[str, Any]) -> TrustEvent:
    return TrustEvent(
        timestamp=load_dt(data["timestamp"]),
        delta=float(data["delta"]),
        reason=data["reason"],
        context=dict(data.get("context") or {}),
        score_before=data.get("score_before"),
        score_after=data.get("score_after"),
    )


def trust_score_to_dict(score: TrustScore) -> dict[str, Any]:
    return {
        "user_id": score.user_id,
        "score": score.score,
        "level": score.level.value,
        "last_updated": dump_dt(score.last_updated),
        "joined_at": dump_dt(score.joined_at),
        "permanently_locked": score.permanently_locked,
        "last_decayed": dump_dt(score.last_decayed),
        "history": [trust_event_to_dict(e) for e in score.history],
    }


def trust_score_from_dict(data: dict[str, Any]) -> TrustScore:
    return TrustScore(
        user_id=data["user_id"],
        score=float(data["score"]),
        level=TrustLevel(data["level"]),
        last_updated=load_dt(data["last_updated"]),
        joined_at=load_dt(data["joined_at"]),
        history=[trust_event_from_dict(e) for e in data.get("history", [])],
        permanently_locked=bool(data.get("permanently_locked", False)),
        last_decayed=load_dt(data.get("last_decayed")),
    )


# ----------------------------------------------------------------------
# Violations
# ----------------------------------------------------------------------

def violation_to_dict(record: ViolationRecord) -> dict[str, Any]:
    return {
        "watch_id": record.watch_id,
        "user_id": record.user_id,
        "count": record.count,
        "first_violation": dump_dt(record.first_violation),
        "last_violation": dump_dt(record.last_violation),
        "history": [
            {
                "timestamp": dump_dt(e.timestamp),
                "condition_type": e.condition_type,
                "evidence": e.evidence,
                "confidence": e.confidence,
            }
            for e in record.history
        ],
    }


def violation_from_dict(data: dict[str, Any]) -> ViolationRecord:
    return ViolationRecord(
        watch_id=data["watch_id"],
        user_id=data["user_id"],
        count=int(data["count"]),
        first_violation=load_dt(data["first_violation"]),
        last_violation=load_dt(data["last_violation"]),
        history=[
            Evidence(
                timestamp=load_dt(e["timestamp"]),
                condition_type=e["condition_type"],
                evidence=e.get("evidence", ""),
                confidence=float(e.get("confidence", 0.0)),
            )
            for e in data.get("history", [])
        ],
    )


# ----------------------------------------------------------------------
# Watches
# ----------------------------------------------------------------------

def action_to_dict(action: ConditionalAction) -> dict[str, Any]:
    data: dict[str, Any] = {
        "action": action.action.value,
        "parameters": dict(action.parameters),
    }
    if action.condition is not None:
        data["condition"] = {
            "type": action.condition.type.value,
            "operator": action.condition.operator.value if action.condition.operator else None,
            "value": action.condition.value,
        }
    if action.else_action is not None:
        data["else_action"] = action_to_dict(action.else_action)
    return data


def action_from_dict(data: dict[str, Any]) -> ConditionalAction:
    condition = None
    raw_cond = data.get("condition")
    if raw_cond is not None:
        operator = raw_cond.get("operator")
        value = raw_cond.get("value")
        condition = ActionCondition(
            type=ActionConditionType(raw_cond["type"]),
            operator=Operator(operator) if operator is not None else None,
            value=float(value) if value is not None else None,
        )
    else_action = None
    if data.get("else_action") is not None:
        else_action = action_from_dict(data["else_action"])
    return ConditionalAction(
        action=ActionKind(data["action"]),
        parameters=dict(data.get("parameters") or {}),
        condition=condition,
        else_action=else_action,
    )


def stage_to_dict(stage: EscalationStage) -> dict[str, Any]:
    return {
        "violation_count": stage.violation_count,
        "action": stage.action.value,
        "parameters": dict(stage.parameters),
        "description": stage.description,
    }


def stage_from_dict(data: dict[str, Any]) -> EscalationStage:
    return EscalationStage(
        violation_count=int(data["violation_count"]),
        action=ActionKind(data["action"]),
        parameters=dict(data.get("parameters") or {}),
        description=data.get("description", ""),
    )


def target_to_dict(target: TargetSelector) -> dict[str, Any]:
    data: dict[str, Any] = {"user_ids": sorted(target.user_ids)}
    if target.filter is not None:
        f = target.filter
        data["filter"] = {
            "trust_score_min": f.trust_score_min,
            "trust_score_max": f.trust_score_max,
            "has_role": f.has_role,
            "lacks_role": f.lacks_role,
            "joined_within_days": f.joined_within_days,
        }
    return data


def target_from_dict(data: dict[str, Any]) -> TargetSelector:
    raw_filter = data.get("filter")
    target_filter = None
    if raw_filter is not None:
        target_filter = TargetFilter(
            trust_score_min=_opt_float(raw_filter.get("trust_score_min")),
            trust_score_max=_opt_float(raw_filter.get("trust_score_max")),
            has_role=raw_filter.get("has_role"),
            lacks_role=raw_filter.get("lacks_role"),
            joined_within_days=_opt_float(raw_filter.get("joined_within_days")),
        )
    return TargetSelector(
        user_ids=frozenset(str(u) for u in data.get("user_ids", [])),
        filter=target_filter,
    )


def watch_to_dict(watch: WatchConfig) -> dict[str, Any]:
    data: dict[str, Any] = {
        "watch_id": watch.watch_id,
        "scope_id": watch.scope_id,
        "created_at": dump_dt(watch.created_at),
        "expires_at": dump_dt(watch.expires_at),
        "created_by": watch.created_by,
        "target": target_to_dict(watch.target),
        "conditions": [
            {
                "type": c.type.value,
                "description": c.description,
                "threshold": c.threshold,
                "keywords": list(c.keywords),
            }
            for c in watch.conditions
        ],
        "actions": [action_to_dict(a) for a in watch.actions],
        "trigger_count": watch.trigger_count,
        "active": watch.active,
    }
    if watch.escalation is not None:
        data["escalation"] = {
            "enabled": watch.escalation.enabled,
            "reset_after_hours": watch.escalation.reset_after_hours,
            "stages": [stage_to_dict(s) for s in watch.escalation.stages],
        }
    return data


def watch_from_dict(data: dict[str, Any]) -> WatchConfig:
    escalation = None
    raw_esc = data.get("escalation")
    if raw_esc is not None:
        escalation = EscalationConfig(
            stages=tuple(stage_from_dict(s) for s in raw_esc["stages"]),
            reset_after_hours=_opt_float(raw_esc.get("reset_after_hours")),
            enabled=bool(raw_esc.get("enabled", True)),
        )
    return WatchConfig(
        watch_id=data.get("watch_id", ""),
        scope_id=data["scope_id"],
        created_at=load_dt(data["created_at"]),
        expires_at=load_dt(data["expires_at"]),
        target=target_from_dict(data.get("target") or {}),
        conditions=tuple(
            WatchCondition(
                type=ConditionType(c["type"]),
                description=c.get("description", ""),
                threshold=_opt_float(c.get("threshold")),
                keywords=tuple(c.get("keywords") or ()),
            )
            for c in data["conditions"]
        ),
        actions=tuple(action_from_dict(a) for a in data.get("actions", [])),
        escalation=escalation,
        created_by=data.get("created_by"),
        trigger_count=int(data.get("trigger_count", 0)),
        active=bool(data.get("active", True)),
    )


def _opt_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None
