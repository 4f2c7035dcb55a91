"""Eager validation of watch configurations.

A watch is either accepted whole or rejected whole: every problem found
is reported in one ValidationError and nothing is partially applied.

Checks:
- scope and timestamps present, timezone-aware, expires_at > created_at
- target selector names users or carries a filter; filter ranges sane
- at least one condition; keyword conditions carry keywords
- at least one default action or an escalation ladder
- action parameters match their action kind (timeout needs a positive
  duration, role changes need a role)
- non-``always`` action conditions carry an operator and a value
- action trees are at most MAX_ACTION_DEPTH deep
- escalation thresholds are >= 1 and unique; reset window is positive
"""

from __future__ import annotations

import dataclasses
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from warden.errors import ValidationError
from warden.models.enforcement import ActionKind
from warden.models.watch import (
    ActionConditionType,
    ConditionalAction,
    ConditionType,
    EscalationConfig,
    WatchConfig,
)
from warden.persistence import codec
from warden.policy.resolver import PolicyResolver

MAX_ACTION_DEPTH = 8

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_ROLE_ACTIONS = (ActionKind.ADD_ROLE, ActionKind.REMOVE_ROLE)
_RATIO_CONDITIONS = (
    ConditionType.TOXICITY,
    ConditionType.FUD_DETECTION,
    ConditionType.NEGATIVE_SENTIMENT,
)


def parse_duration(value: Any) -> int:
    """Parse "30s", "10m", "2h", "7d" (or a bare number of seconds)."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _DURATION_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


def new_watch_id() -> str:
    return f"watch-{uuid.uuid4().hex[:12]}"


class WatchValidator:
    """Parses and validates watch configurations before they go live.

    Usage:
        validator = WatchValidator(resolver)
        config = validator.parse_watch(raw_dict, now)   # raises ValidationError
        problems = validator.validate(config)           # [] when valid
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def parse_watch(
        self,
        data: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> WatchConfig:
        """Build a validated WatchConfig from a plain mapping.

        Accepts either ``expires_at`` or ``duration_hours``, and human
        durations ("10m") on timeout parameters. Escalation stages come
        back sorted by threshold.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        raw = dict(data)
        problems: list[str] = []

        created_at = raw.get("created_at") or now
        if isinstance(created_at, datetime):
            raw["created_at"] = codec.dump_dt(created_at)
        else:
            raw["created_at"] = created_at

        if raw.get("expires_at") is None:
            hours = raw.pop("duration_hours", None)
            if hours is None:
                problems.append("expires_at or duration_hours is required")
            else:
                try:
                    start = codec.load_dt(raw["created_at"])
                    raw["expires_at"] = codec.dump_dt(start + timedelta(hours=float(hours)))
                except (TypeError, ValueError) as exc:
                    problems.append(f"invalid duration_hours: {exc}")
        elif isinstance(raw["expires_at"], datetime):
            raw["expires_at"] = codec.dump_dt(raw["expires_at"])

        if not raw.get("watch_id"):
            raw["watch_id"] = new_watch_id()

        try:
            raw["actions"] = [self._normalize_action(a) for a in raw.get("actions") or []]
            if raw.get("escalation"):
                esc = dict(raw["escalation"])
                esc["stages"] = [self._normalize_stage(s) for s in esc.get("stages") or []]
                raw["escalation"] = esc
        except (TypeError, ValueError, AttributeError) as exc:
            problems.append(str(exc))

        if problems:
            raise ValidationError(problems)

        try:
            config = codec.watch_from_dict(raw)
        except KeyError as exc:
            raise ValidationError([f"missing field: {exc.args[0]}"]) from exc
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValidationError([f"malformed watch: {exc}"]) from exc

        problems = self.validate(config)
        if problems:
            raise ValidationError(problems)
        return self.normalized(config)

    def validate(self, config: WatchConfig) -> list[str]:
        """Return every problem with the config; empty means valid."""
        problems: list[str] = []

        if not config.watch_id:
            problems.append("watch_id is required")
        if not config.scope_id:
            problems.append("scope_id is required")
        for name in ("created_at", "expires_at"):
            value = getattr(config, name)
            if not isinstance(value, datetime) or value.tzinfo is None:
                problems.append(f"{name} must be a timezone-aware datetime")
        if not problems and config.expires_at <= config.created_at:
            problems.append("expires_at must be after created_at")

        problems.extend(self._check_target(config))
        problems.extend(self._check_conditions(config))

        if not config.actions and config.escalation is None:
            problems.append("watch needs default actions or an escalation ladder")
        for i, action in enumerate(config.actions):
            problems.extend(self._check_action(action, f"actions[{i}]", depth=1))

        if config.escalation is not None:
            problems.extend(self._check_escalation(config.escalation))
        return problems

    @staticmethod
    def normalized(config: WatchConfig) -> WatchConfig:
        """Return the config with escalation stages sorted ascending."""
        if config.escalation is None:
            return config
        stages = tuple(sorted(config.escalation.stages, key=lambda s: s.violation_count))
        return dataclasses.replace(
            config, escalation=dataclasses.replace(config.escalation, stages=stages),
        )

    # ------------------------------------------------------------------
    # Section checks
    # ------------------------------------------------------------------

    def _check_target(self, config: WatchConfig) -> list[str]:
        problems = []
        target = config.target
        if not target.user_ids and target.filter is None:
            problems.append("target must list user_ids or carry a filter")
        f = target.filter
        if f is not None:
            if (
                f.trust_score_min is None and f.trust_score_max is None
                and f.has_role is None and f.lacks_role is None
                and f.joined_within_days is None
            ):
                problems.append("target filter sets no predicate")
            bounds = self._resolver.trust_bounds()
            for name in ("trust_score_min", "trust_score_max"):
                value = getattr(f, name)
                if value is not None and not (bounds.min_score <= value <= bounds.max_score):
                    problems.append(f"target.filter.{name} outside score range")
            if (
                f.trust_score_min is not None and f.trust_score_max is not None
                and f.trust_score_min > f.trust_score_max
            ):
                problems.append("target.filter.trust_score_min exceeds trust_score_max")
            if f.joined_within_days is not None and f.joined_within_days <= 0:
                problems.append("target.filter.joined_within_days must be > 0")
        return problems

    def _check_conditions(self, config: WatchConfig) -> list[str]:
        problems = []
        if not config.conditions:
            problems.append("at least one condition is required")
        for i, cond in enumerate(config.conditions):
            where = f"conditions[{i}] ({cond.type.value})"
            if cond.type == ConditionType.CUSTOM_KEYWORD and not any(k.strip() for k in cond.keywords):
                problems.append(f"{where} needs keywords")
            if cond.threshold is None:
                continue
            if cond.type in _RATIO_CONDITIONS and not (0.0 <= cond.threshold <= 1.0):
                problems.append(f"{where} threshold must be in [0, 1]")
            elif cond.type == ConditionType.SENTIMENT_TREND and not (-2.0 <= cond.threshold < 0.0):
                problems.append(f"{where} threshold must be negative (mean drop)")
            elif cond.type in (
                ConditionType.MESSAGE_VELOCITY, ConditionType.VIOLATION_COUNT,
            ) and cond.threshold < 1:
                problems.append(f"{where} threshold must be >= 1")
            elif cond.type == ConditionType.TRUST_DROP:
                bounds = self._resolver.trust_bounds()
                if not (bounds.min_score <= cond.threshold <= bounds.max_score):
                    problems.append(f"{where} threshold outside score range")
        return problems

    def _check_action(self, action: ConditionalAction, where: str, depth: int) -> list[str]:
        if depth > MAX_ACTION_DEPTH:
            return [f"{where} nests deeper than {MAX_ACTION_DEPTH} levels"]
        problems = self._check_parameters(action.action, action.parameters, where)
        cond = action.condition
        if cond is not None and cond.type != ActionConditionType.ALWAYS:
            if cond.operator is None or cond.value is None:
                problems.append(f"{where}.condition ({cond.type.value}) needs operator and value")
        if action.else_action is not None:
            if cond is None or cond.type == ActionConditionType.ALWAYS:
                problems.append(f"{where}.else_action is unreachable without a condition")
            problems.extend(
                self._check_action(action.else_action, f"{where}.else_action", depth + 1)
            )
        return problems

    def _check_escalation(self, escalation: EscalationConfig) -> list[str]:
        problems = []
        if not escalation.stages:
            problems.append("escalation needs at least one stage")
        seen: set[int] = set()
        for i, stage in enumerate(escalation.stages):
            where = f"escalation.stages[{i}]"
            if stage.violation_count < 1:
                problems.append(f"{where}.violation_count must be >= 1")
            if stage.violation_count in seen:
                problems.append(
                    f"{where}: duplicate escalation threshold {stage.violation_count}"
                )
            seen.add(stage.violation_count)
            problems.extend(self._check_parameters(stage.action, stage.parameters, where))
        if escalation.reset_after_hours is not None and escalation.reset_after_hours <= 0:
            problems.append("escalation.reset_after_hours must be > 0")
        return problems

    @staticmethod
    def _check_parameters(kind: ActionKind, parameters: dict[str, Any], where: str) -> list[str]:
        problems = []
        if kind == ActionKind.TIMEOUT:
            seconds = parameters.get("duration_seconds")
            if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds <= 0:
                problems.append(f"{where}: timeout needs duration_seconds > 0")
        if kind in _ROLE_ACTIONS and not parameters.get("role"):
            problems.append(f"{where}: {kind.value} needs a role")
        return problems

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _normalize_action(self, data: dict[str, Any], depth: int = 1) -> dict[str, Any]:
        if depth > MAX_ACTION_DEPTH:
            raise ValueError(f"action tree nests deeper than {MAX_ACTION_DEPTH} levels")
        out = dict(data)
        out["parameters"] = self._normalize_parameters(out.get("parameters") or {})
        if out.get("else_action") is not None:
            out["else_action"] = self._normalize_action(out["else_action"], depth + 1)
        return out

    def _normalize_stage(self, data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        out["parameters"] = self._normalize_parameters(out.get("parameters") or {})
        return out

    @staticmethod
    def _normalize_parameters(parameters: dict[str, Any]) -> dict[str, Any]:
        out = dict(parameters)
        if "duration" in out and "duration_seconds" not in out:
            out["duration_seconds"] = parse_duration(out.pop("duration"))
        return out
