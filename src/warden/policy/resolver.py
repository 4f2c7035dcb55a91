"""Policy resolver — typed, validated access to engine_params.json.

Every tunable of the engine is read through this class. Invariants are
checked once at load time; a resolver that constructs successfully is
internally consistent:
- min_score < default_score < max_score
- level thresholds strictly decreasing (exemplary > trusted > neutral > cautious)
  and inside [min_score, max_score]
- decay grace and rate are non-negative
- redemption ceiling inside the score range
- core-violation penalties are non-negative for every type and severity
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from warden.errors import ConfigError
from warden.models.classification import CoreViolationType, ViolationSeverity
from warden.models.enforcement import ActionKind
from warden.models.trust import TrustLevel
from warden.models.watch import ConditionType

PARAMS_FILENAME = "engine_params.json"


@dataclass(frozen=True)
class TrustBounds:
    min_score: float
    max_score: float
    default_score: float
    history_limit: int

    def clamp(self, value: float) -> float:
        return max(self.min_score, min(self.max_score, value))


@dataclass(frozen=True)
class DecayPolicy:
    grace_days: float
    points_per_day: float
    sweep_interval_seconds: float


@dataclass(frozen=True)
class RedemptionPolicy:
    eligibility_ceiling: float
    max_points_per_call: float
    positive_clean_points: float
    positive_clean_max_toxicity: float
    helpful_points: float
    clean_communication_points: float
    clean_max_manipulation: float
    clean_max_toxicity: float
    history_window: int


@dataclass(frozen=True)
class SignalPolicy:
    severe_toxicity_threshold: float
    severe_toxicity_delta: float
    mild_toxicity_threshold: float
    mild_toxicity_delta: float
    manipulation_threshold: float
    manipulation_delta: float
    positive_max_toxicity: float
    positive_delta: float


@dataclass(frozen=True)
class ActionThresholds:
    ban: float
    timeout: float
    warn: float
    bad_message_toxicity: float
    bad_message_manipulation: float


@dataclass(frozen=True)
class HeuristicPolicy:
    velocity_window_seconds: float
    velocity_buffer_size: int
    buffer_idle_seconds: float
    sentiment_window: int
    sentiment_recent: int
    sentiment_min_samples: int
    spam_caps_ratio: float
    spam_min_length: int
    spam_max_mentions: int


@dataclass(frozen=True)
class SeverityEnforcement:
    """Enforcement mapped to a core-violation severity."""
    action: ActionKind
    parameters: dict[str, Any]


class PolicyResolver:
    """Resolves engine parameters from a validated JSON document.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        bounds = resolver.trust_bounds()
        level = resolver.trust_level(42.0)
    """

    def __init__(self, params: Mapping[str, Any]) -> None:
        self._params = params
        try:
            self._build()
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Malformed engine parameters: {exc!r}") from exc
        errors = self._validate()
        if errors:
            raise ConfigError("; ".join(errors))

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILENAME
        try:
            with path.open("r", encoding="utf-8") as handle:
                params = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot load {path}: {exc}") from exc
        return cls(params)

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> PolicyResolver:
        return cls(params)

    @property
    def params(self) -> Mapping[str, Any]:
        return self._params

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _build(self) -> None:
        trust = self._params["trust"]
        self._bounds = TrustBounds(
            min_score=float(trust["min_score"]),
            max_score=float(trust["max_score"]),
            default_score=float(trust["default_score"]),
            history_limit=int(trust["history_limit"]),
        )
        levels = trust["levels"]
        # Highest band first; anything below "cautious" is dangerous.
        self._level_thresholds: list[tuple[TrustLevel, float]] = [
            (TrustLevel.EXEMPLARY, float(levels["exemplary"])),
            (TrustLevel.TRUSTED, float(levels["trusted"])),
            (TrustLevel.NEUTRAL, float(levels["neutral"])),
            (TrustLevel.CAUTIOUS, float(levels["cautious"])),
        ]
        self._action_thresholds = ActionThresholds(
            **{k: float(v) for k, v in trust["action_thresholds"].items()}
        )

        decay = self._params["decay"]
        self._decay = DecayPolicy(
            grace_days=float(decay["grace_days"]),
            points_per_day=float(decay["points_per_day"]),
            sweep_interval_seconds=float(decay["sweep_interval_seconds"]),
        )

        red = dict(self._params["redemption"])
        red["history_window"] = int(red["history_window"])
        self._redemption = RedemptionPolicy(**red)

        self._signals = SignalPolicy(
            **{k: float(v) for k, v in self._params["signals"].items()}
        )

        core = self._params["core_violations"]
        self._core_min_confidence = float(core["min_confidence"])
        self._core_penalties: dict[tuple[CoreViolationType, ViolationSeverity], float] = {}
        for type_name, by_severity in core["penalties"].items():
            vtype = CoreViolationType(type_name)
            for sev_name, points in by_severity.items():
                self._core_penalties[(vtype, ViolationSeverity(sev_name))] = float(points)
        self._core_enforcement: dict[ViolationSeverity, Optional[SeverityEnforcement]] = {}
        for sev_name, entry in core["enforcement"].items():
            if entry is None:
                self._core_enforcement[ViolationSeverity(sev_name)] = None
                continue
            entry = dict(entry)
            action = ActionKind(entry.pop("action"))
            self._core_enforcement[ViolationSeverity(sev_name)] = SeverityEnforcement(
                action=action, parameters=entry,
            )

        watch = self._params["watch"]
        self._watch_sweep_interval = float(watch["sweep_interval_seconds"])
        self._violation_history_limit = int(watch["violation_history_limit"])
        self._trigger_penalties = {
            ConditionType(name): float(delta)
            for name, delta in watch["trigger_trust_penalties"].items()
        }

        cond = self._params["conditions"]
        self._default_thresholds = {
            ConditionType(name): float(value)
            for name, value in cond["default_thresholds"].items()
        }
        self._heuristics = HeuristicPolicy(
            velocity_window_seconds=float(cond["velocity_window_seconds"]),
            velocity_buffer_size=int(cond["velocity_buffer_size"]),
            buffer_idle_seconds=float(cond.get("buffer_idle_seconds", 86400)),
            sentiment_window=int(cond["sentiment_window"]),
            sentiment_recent=int(cond["sentiment_recent"]),
            sentiment_min_samples=int(cond["sentiment_min_samples"]),
            spam_caps_ratio=float(cond["spam_caps_ratio"]),
            spam_min_length=int(cond["spam_min_length"]),
            spam_max_mentions=int(cond["spam_max_mentions"]),
        )

        clf = self._params["classifier"]
        self._classifier_timeout = float(clf["timeout_seconds"])
        self._classifier_workers = int(clf["max_workers"])

    def _validate(self) -> list[str]:
        errors: list[str] = []
        b = self._bounds
        if not (b.min_score < b.default_score < b.max_score):
            errors.append(
                f"trust scores must satisfy min < default < max, got "
                f"{b.min_score} / {b.default_score} / {b.max_score}"
            )
        if b.history_limit < 1:
            errors.append("trust.history_limit must be >= 1")

        thresholds = [t for _, t in self._level_thresholds]
        if any(hi <= lo for hi, lo in zip(thresholds, thresholds[1:])):
            errors.append("trust.levels must be strictly decreasing: exemplary > trusted > neutral > cautious")
        for level, t in self._level_thresholds:
            if not (b.min_score <= t <= b.max_score):
                errors.append(f"trust.levels.{level.value} ({t}) outside score range")

        at = self._action_thresholds
        if not (at.ban <= at.timeout <= at.warn):
            errors.append("trust.action_thresholds must satisfy ban <= timeout <= warn")

        if self._decay.grace_days < 0:
            errors.append("decay.grace_days must be >= 0")
        if self._decay.points_per_day < 0:
            errors.append("decay.points_per_day must be >= 0")
        if self._decay.sweep_interval_seconds <= 0:
            errors.append("decay.sweep_interval_seconds must be > 0")

        r = self._redemption
        if not (b.min_score < r.eligibility_ceiling <= b.max_score):
            errors.append("redemption.eligibility_ceiling must be inside the score range")
        if r.max_points_per_call <= 0:
            errors.append("redemption.max_points_per_call must be > 0")

        if not (0.0 <= self._core_min_confidence <= 1.0):
            errors.append("core_violations.min_confidence must be in [0, 1]")
        for (vtype, sev), points in self._core_penalties.items():
            if points < 0:
                errors.append(f"core_violations.penalties.{vtype.value}.{sev.value} must be >= 0")
        for vtype in CoreViolationType:
            for sev in ViolationSeverity:
                if (vtype, sev) not in self._core_penalties:
                    errors.append(f"core_violations.penalties missing {vtype.value}.{sev.value}")

        if self._watch_sweep_interval <= 0:
            errors.append("watch.sweep_interval_seconds must be > 0")
        if self._violation_history_limit < 1:
            errors.append("watch.violation_history_limit must be >= 1")
        for ctype, delta in self._trigger_penalties.items():
            if delta > 0:
                errors.append(f"watch.trigger_trust_penalties.{ctype.value} must be <= 0")

        h = self._heuristics
        if h.sentiment_recent < 1 or h.sentiment_min_samples <= h.sentiment_recent:
            errors.append("conditions.sentiment_min_samples must exceed sentiment_recent >= 1")
        if h.sentiment_window < h.sentiment_min_samples:
            errors.append("conditions.sentiment_window must be >= sentiment_min_samples")
        if h.velocity_window_seconds <= 0:
            errors.append("conditions.velocity_window_seconds must be > 0")
        if h.buffer_idle_seconds < h.velocity_window_seconds:
            errors.append("conditions.buffer_idle_seconds must be >= velocity_window_seconds")

        if self._classifier_timeout <= 0:
            errors.append("classifier.timeout_seconds must be > 0")
        if self._classifier_workers < 1:
            errors.append("classifier.max_workers must be >= 1")
        return errors

    # ------------------------------------------------------------------
    # Trust
    # ------------------------------------------------------------------

    def trust_bounds(self) -> TrustBounds:
        return self._bounds

    def trust_level(self, score: float) -> TrustLevel:
        """Map a score to its band. Pure and deterministic."""
        for level, threshold in self._level_thresholds:
            if score >= threshold:
                return level
        return TrustLevel.DANGEROUS

    def level_thresholds(self) -> list[tuple[TrustLevel, float]]:
        return list(self._level_thresholds)

    def action_thresholds(self) -> ActionThresholds:
        return self._action_thresholds

    def decay_policy(self) -> DecayPolicy:
        return self._decay

    def redemption_policy(self) -> RedemptionPolicy:
        return self._redemption

    def signal_policy(self) -> SignalPolicy:
        return self._signals

    # ------------------------------------------------------------------
    # Core violations
    # ------------------------------------------------------------------

    def core_violation_min_confidence(self) -> float:
        return self._core_min_confidence

    def core_violation_penalty(
        self, violation_type: CoreViolationType, severity: ViolationSeverity,
    ) -> float:
        return self._core_penalties[(violation_type, severity)]

    def core_violation_enforcement(
        self, severity: ViolationSeverity,
    ) -> Optional[SeverityEnforcement]:
        return self._core_enforcement.get(severity)

    # ------------------------------------------------------------------
    # Watches and conditions
    # ------------------------------------------------------------------

    def watch_sweep_interval(self) -> float:
        return self._watch_sweep_interval

    def violation_history_limit(self) -> int:
        return self._violation_history_limit

    def trigger_trust_penalty(self, condition_type: ConditionType) -> float:
        return self._trigger_penalties.get(condition_type, 0.0)

    def default_threshold(self, condition_type: ConditionType) -> Optional[float]:
        return self._default_thresholds.get(condition_type)

    def heuristic_policy(self) -> HeuristicPolicy:
        return self._heuristics

    def classifier_timeout(self) -> float:
        return self._classifier_timeout

    def classifier_workers(self) -> int:
        return self._classifier_workers
