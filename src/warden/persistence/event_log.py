"""Append-only event log — the audit stream of every engine decision.

Every trust change and every watch trigger produces an event record
appended here. Events are immutable once written. The log serves as:
1. The TrustEvent / TriggerEvent stream consumed downstream
   (dashboards, audit, announcements) through ``subscribe``.
2. The audit trail: each record carries a SHA-256 of its canonical JSON.
3. Optional JSONL persistence with integrity verification on load.

Subscribers are fanned out synchronously in append order. A subscriber
that raises is logged and skipped; it never blocks the producer or the
other subscribers.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of engine events."""
    # Trust ledger
    TRUST_UPDATED = "trust_updated"
    TRUST_DECAYED = "trust_decayed"
    TRUST_LOCKED = "trust_locked"
    REDEMPTION_GRANTED = "redemption_granted"
    CORE_VIOLATION_DETECTED = "core_violation_detected"
    # Watch lifecycle
    WATCH_CREATED = "watch_created"
    WATCH_CANCELLED = "watch_cancelled"
    WATCH_EXPIRED = "watch_expired"
    WATCH_TRIGGERED = "watch_triggered"
    # Violations and enforcement
    VIOLATION_RECORDED = "violation_recorded"
    ESCALATION_STAGE_REACHED = "escalation_stage_reached"
    ACTION_EXECUTED = "action_executed"
    ACTION_FAILED = "action_failed"
    ACTION_SKIPPED = "action_skipped"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the log.

    The event_hash is computed at creation time over the canonical JSON
    of every other field.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )


Subscriber = Callable[[EventRecord], None]


def _canonical_hash(
    event_id: str, kind: str, ts: str, actor_id: str, payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": kind,
            "timestamp_utc": ts,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


class EventLog:
    """Append-only event log with optional file persistence and fan-out.

    Events can only be appended, never modified or deleted. Appends are
    serialized, so the stored order is the commit order.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()
        self._lock = threading.RLock()
        self._subscribers: list[tuple[Optional[EventKind], Subscriber]] = []

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event and notify subscribers.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event.event_id}")

            self._events.append(event)
            self._event_ids.add(event.event_id)

            if self._storage_path:
                try:
                    self._append_to_file(event)
                except OSError:
                    logger.error(
                        "Failed to persist event %s to %s",
                        event.event_id, self._storage_path, exc_info=True,
                    )
            subscribers = list(self._subscribers)
            # Fan out under the lock so every subscriber sees commit order.
            for kind, callback in subscribers:
                if kind is not None and kind != event.event_kind:
                    continue
                try:
                    callback(event)
                except Exception:
                    logger.error(
                        "Event subscriber %r failed on %s",
                        callback, event.event_id, exc_info=True,
                    )

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create, append and return a new event with a fresh id."""
        event = EventRecord.create(
            event_id=f"evt-{uuid.uuid4().hex}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            timestamp_utc=timestamp_utc,
        )
        self.append(event)
        return event

    def subscribe(self, callback: Subscriber, kind: Optional[EventKind] = None) -> None:
        """Register a callback for every event, or only events of ``kind``."""
        with self._lock:
            self._subscribers.append((kind, callback))

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers = [(k, cb) for k, cb in self._subscribers if cb != callback]

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        with self._lock:
            if kind is None:
                return list(self._events)
            return [e for e in self._events if e.event_kind == kind]

    def events_for(self, actor_id: str, kind: Optional[EventKind] = None) -> list[EventRecord]:
        return [e for e in self.events(kind) if e.actor_id == actor_id]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events after a timestamp, optionally filtered by kind."""
        return [e for e in self.events(kind) if e.timestamp_utc >= since_utc]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        record = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            "timestamp_utc": event.timestamp_utc,
            "actor_id": event.actor_id,
            "payload": event.payload,
            "event_hash": event.event_hash,
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False, default=str) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
