#!/usr/bin/env python3
"""Warden invariant checks against the engine parameter document."""

import json
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "engine_params.json"

LEVEL_ORDER = ("exemplary", "trusted", "neutral", "cautious")
SEVERITIES = ("low", "medium", "high", "critical")
VIOLATION_TYPES = (
    "profanity",
    "hate_speech",
    "harassment",
    "spam",
    "scam",
    "explicit_content",
    "doxxing",
    "raiding",
    "impersonation",
)
CONDITION_TYPES = (
    "fud_detection",
    "negative_sentiment",
    "spam_detection",
    "toxicity",
    "trust_drop",
    "violation_count",
    "custom_keyword",
    "sentiment_trend",
    "message_velocity",
)


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_penalty_table(penalties: dict, errors: list[str]) -> None:
    """Every type needs every severity, non-negative and non-decreasing."""
    for vtype in VIOLATION_TYPES:
        row = penalties.get(vtype)
        if row is None:
            errors.append(f"core_violations.penalties missing type: {vtype}")
            continue
        previous = None
        for severity in SEVERITIES:
            if severity not in row:
                errors.append(f"core_violations.penalties.{vtype} missing severity: {severity}")
                continue
            points = row[severity]
            if points < 0:
                errors.append(f"core_violations.penalties.{vtype}.{severity} must be >= 0")
            if previous is not None and points < previous:
                errors.append(
                    f"core_violations.penalties.{vtype}.{severity} must not be below the lower severity"
                )
            previous = points


def check() -> int:
    params = load_json(PARAMS_PATH)
    errors: list[str] = []

    # --- Trust bound invariants ---
    trust = params["trust"]
    lo, hi, default = trust["min_score"], trust["max_score"], trust["default_score"]
    if not (lo < default < hi):
        errors.append(f"trust scores must satisfy min < default < max, got {lo}/{default}/{hi}")
    if lo != 0 or hi != 100:
        errors.append(f"trust range must be [0, 100], got [{lo}, {hi}]")
    if trust["history_limit"] < 1:
        errors.append("trust.history_limit must be >= 1")

    # --- Level band invariants ---
    levels = trust["levels"]
    thresholds = []
    for name in LEVEL_ORDER:
        if name not in levels:
            errors.append(f"trust.levels missing band: {name}")
            continue
        thresholds.append(levels[name])
    for high, low in zip(thresholds, thresholds[1:]):
        if high <= low:
            errors.append("trust.levels must be strictly decreasing from exemplary to cautious")
            break
    if levels.get("neutral", default) > default:
        errors.append("default_score must fall in the neutral band or above")

    # --- Action threshold invariants ---
    at = trust["action_thresholds"]
    if not (at["ban"] <= at["timeout"] <= at["warn"]):
        errors.append("action_thresholds must satisfy ban <= timeout <= warn")
    for key in ("bad_message_toxicity", "bad_message_manipulation"):
        if not (0.0 <= at[key] <= 1.0):
            errors.append(f"action_thresholds.{key} must be in [0, 1]")

    # --- Decay and redemption invariants ---
    decay = params["decay"]
    if decay["grace_days"] < 0:
        errors.append("decay.grace_days must be >= 0")
    if decay["points_per_day"] < 0:
        errors.append("decay.points_per_day must be >= 0")
    redemption = params["redemption"]
    if not (lo < redemption["eligibility_ceiling"] <= hi):
        errors.append("redemption.eligibility_ceiling must be inside the score range")
    awards = (
        redemption["positive_clean_points"]
        + redemption["helpful_points"]
        + redemption["clean_communication_points"]
    )
    if awards < redemption["max_points_per_call"]:
        errors.append("redemption.max_points_per_call exceeds the sum of all awards")
    if any(redemption[k] < 0 for k in ("positive_clean_points", "helpful_points", "clean_communication_points")):
        errors.append("redemption awards must be >= 0")

    # --- Behaviour signal invariants ---
    signals = params["signals"]
    if signals["severe_toxicity_threshold"] <= signals["mild_toxicity_threshold"]:
        errors.append("signals.severe_toxicity_threshold must exceed mild_toxicity_threshold")
    for key in ("severe_toxicity_delta", "mild_toxicity_delta", "manipulation_delta"):
        if signals[key] > 0:
            errors.append(f"signals.{key} must be <= 0")
    if signals["positive_delta"] < 0:
        errors.append("signals.positive_delta must be >= 0")

    # --- Core violation invariants ---
    core = params["core_violations"]
    if not (0.0 <= core["min_confidence"] <= 1.0):
        errors.append("core_violations.min_confidence must be in [0, 1]")
    check_penalty_table(core["penalties"], errors)
    enforcement = core["enforcement"]
    for severity in SEVERITIES:
        if severity not in enforcement:
            errors.append(f"core_violations.enforcement missing severity: {severity}")
    if (enforcement.get("critical") or {}).get("action") != "ban":
        errors.append("critical core violations must map to ban")

    # --- Watch invariants ---
    watch = params["watch"]
    if watch["sweep_interval_seconds"] <= 0:
        errors.append("watch.sweep_interval_seconds must be > 0")
    penalties = watch["trigger_trust_penalties"]
    for ctype in CONDITION_TYPES:
        if ctype not in penalties:
            errors.append(f"watch.trigger_trust_penalties missing condition type: {ctype}")
        elif penalties[ctype] > 0:
            errors.append(f"watch.trigger_trust_penalties.{ctype} must be <= 0")

    # --- Condition invariants ---
    cond = params["conditions"]
    defaults = cond["default_thresholds"]
    for ctype in ("toxicity", "fud_detection", "negative_sentiment"):
        if not (0.0 <= defaults.get(ctype, 0.0) <= 1.0):
            errors.append(f"conditions.default_thresholds.{ctype} must be in [0, 1]")
    if defaults.get("sentiment_trend", -1.0) >= 0:
        errors.append("conditions.default_thresholds.sentiment_trend must be negative")
    if cond["sentiment_min_samples"] <= cond["sentiment_recent"]:
        errors.append("conditions.sentiment_min_samples must exceed sentiment_recent")
    if cond["sentiment_window"] < cond["sentiment_min_samples"]:
        errors.append("conditions.sentiment_window must be >= sentiment_min_samples")
    if cond.get("buffer_idle_seconds", 86400) < cond["velocity_window_seconds"]:
        errors.append("conditions.buffer_idle_seconds must be >= velocity_window_seconds")

    # --- Classifier invariants ---
    if params["classifier"]["timeout_seconds"] <= 0:
        errors.append("classifier.timeout_seconds must be > 0")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
