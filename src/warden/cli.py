"""Warden CLI — command-line interface for the reputation engine.

Usage:
    python -m warden.cli status
    python -m warden.cli trust-show --user u1
    python -m warden.cli trust-adjust --user u1 --delta -10 --reason "spam"
    python -m warden.cli trust-lock --user u1 --reason "confirmed scam"
    python -m warden.cli watch-create --file examples/watches/toxicity_ladder.json
    python -m warden.cli watch-list --scope guild-1
    python -m warden.cli simulate-event --user u1 --scope guild-1 --content "..."
    python -m warden.cli sweep
    python -m warden.cli check-invariants

Enforcement from the CLI is always a dry run (LoggingEffector).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

from warden.actions.effector import LoggingEffector
from warden.errors import ConfigError, StateStoreError
from warden.models.classification import BehaviorSignal, Sentiment
from warden.models.watch import BehavioralEvent
from warden.persistence import codec
from warden.persistence.event_log import EventLog
from warden.persistence.state_store import JsonFileStateStore
from warden.policy.resolver import PolicyResolver
from warden.service import ReputationService


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path("data")


def _make_service(args: argparse.Namespace) -> ReputationService:
    """Create a ReputationService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    service = ReputationService(
        resolver,
        store=JsonFileStateStore(data_dir / "state.json"),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        effector=LoggingEffector(),
    )
    service.load()
    return service


def _print(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_result(result) -> int:
    if result.success:
        _print(result.data)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    _print(service.status())
    return 0


def cmd_trust_show(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.report:
        print(service.ledger.report(args.user))
        return 0
    data = codec.trust_score_to_dict(service.get_trust(args.user))
    data["history"] = data["history"][-args.history:]
    _print(data)
    return 0


def cmd_trust_adjust(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_result(service.adjust_trust(args.user, args.delta, args.reason, args.actor))


def cmd_trust_lock(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_result(service.lock_user(args.user, args.reason))


def cmd_decay(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_result(service.run_decay())


def cmd_watch_create(args: argparse.Namespace) -> int:
    try:
        with args.file.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Failed: cannot read {args.file}: {exc}", file=sys.stderr)
        return 1
    if args.scope:
        data["scope_id"] = args.scope
    service = _make_service(args)
    return _print_result(service.create_watch(data))


def cmd_watch_list(args: argparse.Namespace) -> int:
    service = _make_service(args)
    _print(service.list_watches(args.scope))
    return 0


def cmd_watch_cancel(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_result(service.cancel_watch(args.id))


def cmd_sweep(args: argparse.Namespace) -> int:
    service = _make_service(args)
    _print({"removed": service.sweep_watches()})
    return 0


def cmd_simulate_event(args: argparse.Namespace) -> int:
    service = _make_service(args)
    signal = None
    if args.toxicity is not None or args.sentiment is not None or args.helpful:
        signal = BehaviorSignal(
            toxicity=args.toxicity or 0.0,
            manipulation=args.manipulation or 0.0,
            sentiment=Sentiment(args.sentiment or "neutral"),
            is_helpful=args.helpful,
        )
    event = BehavioralEvent(
        event_id=args.event_id or f"cli-{uuid.uuid4().hex[:12]}",
        user_id=args.user,
        scope_id=args.scope,
        content=args.content,
        timestamp=datetime.now(timezone.utc),
        mention_count=args.mentions,
        signal=signal,
    )
    outcome = service.handle_event(event)
    _print({
        "event_id": outcome.event_id,
        "user_id": outcome.user_id,
        "score": outcome.trust.score,
        "level": outcome.trust.level.value,
        "triggers": [
            {
                "watch_id": t.watch_id,
                "condition": t.condition_type.value,
                "evidence": t.evidence,
                "violation_count": t.violation_count,
                "stage": t.stage.description if t.stage else None,
                "results": [
                    {"action": r.action.value if r.action else None, "status": r.status.value}
                    for r in t.results
                ],
            }
            for t in outcome.triggers
        ],
        "core_violations": [
            {"type": f.violation_type.value, "severity": f.severity.value}
            for f in (outcome.core.findings if outcome.core else ())
        ],
        "redemption": outcome.redemption.points if outcome.redemption else None,
        "recommendation": outcome.recommendation.value if outcome.recommendation else None,
    })
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run engine parameter invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warden",
        description="Warden — reputation and escalation engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory for state.json and events.jsonl (default: ./data)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show engine status")

    p_show = sub.add_parser("trust-show", help="Show a user's trust score")
    p_show.add_argument("--user", required=True, help="User ID")
    p_show.add_argument("--history", type=int, default=10, help="History entries to show")
    p_show.add_argument("--report", action="store_true", help="Print a text report")

    p_adj = sub.add_parser("trust-adjust", help="Apply a manual trust delta")
    p_adj.add_argument("--user", required=True, help="User ID")
    p_adj.add_argument("--delta", type=float, required=True, help="Signed change")
    p_adj.add_argument("--reason", required=True, help="Why")
    p_adj.add_argument("--actor", default=None, help="Moderator ID")

    p_lock = sub.add_parser("trust-lock", help="Set a permanent trust floor (irreversible)")
    p_lock.add_argument("--user", required=True, help="User ID")
    p_lock.add_argument("--reason", required=True, help="Why")

    sub.add_parser("decay", help="Run one trust decay sweep")

    p_wc = sub.add_parser("watch-create", help="Create a watch from a JSON file")
    p_wc.add_argument("--file", type=Path, required=True, help="Watch JSON file")
    p_wc.add_argument("--scope", default=None, help="Override scope_id")

    p_wl = sub.add_parser("watch-list", help="List active watches")
    p_wl.add_argument("--scope", default=None, help="Only this scope")

    p_wx = sub.add_parser("watch-cancel", help="Cancel a watch")
    p_wx.add_argument("--id", required=True, help="Watch ID")

    sub.add_parser("sweep", help="Remove expired and cancelled watches")

    p_sim = sub.add_parser("simulate-event", help="Run one message through the engine (dry run)")
    p_sim.add_argument("--user", required=True, help="User ID")
    p_sim.add_argument("--scope", required=True, help="Scope (guild) ID")
    p_sim.add_argument("--content", required=True, help="Message content")
    p_sim.add_argument("--event-id", default=None, help="Event ID (default: random)")
    p_sim.add_argument("--mentions", type=int, default=0, help="Mention count")
    p_sim.add_argument("--toxicity", type=float, default=None, help="Signal toxicity 0..1")
    p_sim.add_argument("--manipulation", type=float, default=None, help="Signal manipulation 0..1")
    p_sim.add_argument(
        "--sentiment", default=None, choices=[s.value for s in Sentiment], help="Signal sentiment",
    )
    p_sim.add_argument("--helpful", action="store_true", help="Mark message as helpful")

    sub.add_parser("check-invariants", help="Run engine parameter invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "trust-show": cmd_trust_show,
        "trust-adjust": cmd_trust_adjust,
        "trust-lock": cmd_trust_lock,
        "decay": cmd_decay,
        "watch-create": cmd_watch_create,
        "watch-list": cmd_watch_list,
        "watch-cancel": cmd_watch_cancel,
        "sweep": cmd_sweep,
        "simulate-event": cmd_simulate_event,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ConfigError, StateStoreError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
