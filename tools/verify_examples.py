#!/usr/bin/env python3
"""Validate example watch configurations with the creation-time validator."""

import json
from datetime import datetime, timezone
from pathlib import Path

from warden.errors import ValidationError
from warden.policy.resolver import PolicyResolver
from warden.policy.validation import WatchValidator


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
EXAMPLES_DIR = ROOT / "examples" / "watches"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_example(path: Path, validator: WatchValidator) -> list[str]:
    try:
        data = load_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        return [f"{path.name}: unreadable: {exc}"]
    try:
        config = validator.parse_watch(data, datetime.now(timezone.utc))
    except ValidationError as exc:
        return [f"{path.name}: {problem}" for problem in exc.problems]

    errors: list[str] = []
    if not config.created_by:
        errors.append(f"{path.name}: examples must name created_by")
    if not any(c.description for c in config.conditions):
        errors.append(f"{path.name}: examples must describe their conditions")
    return errors


def main() -> int:
    validator = WatchValidator(PolicyResolver.from_config_dir(CONFIG_DIR))
    files = sorted(EXAMPLES_DIR.glob("*.json"))
    if not files:
        print(f"No example watches found in {EXAMPLES_DIR}")
        return 1

    all_errors: list[str] = []
    for path in files:
        all_errors.extend(validate_example(path, validator))

    if all_errors:
        print("Example verification failed:")
        for err in all_errors:
            print(f"- {err}")
        return 1

    print(f"Example verification passed ({len(files)} watches).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
