"""Violation tracker — per-(watch, user) counters with a hard reset window.

Invariants:
- The first violation for a (watch, user) pair creates count = 1.
- If ``reset_after_hours`` is set and more than that many hours have
  passed since ``first_violation``, the next violation replaces the
  record with count = 1. Older evidence is discarded with it.
- Otherwise count increments and evidence is appended, keeping only
  the most recent ``violation_history_limit`` entries.
- Updates to one (watch, user) pair are serialized; the returned
  snapshot reflects every violation recorded before it.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from warden.concurrency import KeyedLock
from warden.models.violation import Evidence, ViolationRecord
from warden.persistence import codec
from warden.persistence.event_log import EventKind, EventLog
from warden.persistence.state_store import StateStore
from warden.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_KEY_PREFIX = "violation:"


def _store_key(watch_id: str, user_id: str) -> str:
    return f"{_KEY_PREFIX}{watch_id}:{user_id}"


class ViolationTracker:
    """Counts violations per user per watch.

    Usage:
        tracker = ViolationTracker(resolver)
        record = tracker.record("watch-1", "u1", evidence, reset_after_hours=24)
        record.count  # 1, 2, ... or back to 1 after the reset window
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[StateStore] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._history_limit = resolver.violation_history_limit()
        self._store = store
        self._event_log = event_log
        self._records: dict[tuple[str, str], ViolationRecord] = {}
        self._index_lock = threading.Lock()
        self._locks = KeyedLock()

    def record(
        self,
        watch_id: str,
        user_id: str,
        evidence: Evidence,
        reset_after_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> ViolationRecord:
        now = now or evidence.timestamp
        key = (watch_id, user_id)
        with self._locks.hold(key):
            record = self._load(watch_id, user_id)
            reset = False
            if record is not None and reset_after_hours is not None:
                if now - record.first_violation > timedelta(hours=reset_after_hours):
                    reset = True

            if record is None or reset:
                record = ViolationRecord(
                    watch_id=watch_id,
                    user_id=user_id,
                    count=1,
                    first_violation=now,
                    last_violation=now,
                    history=[evidence],
                )
                with self._index_lock:
                    self._records[key] = record
                if reset:
                    logger.info(
                        "Violation record for %s on %s reset after %sh window",
                        user_id, watch_id, reset_after_hours,
                    )
            else:
                record.count += 1
                record.last_violation = now
                record.history.append(evidence)
                overflow = len(record.history) - self._history_limit
                if overflow > 0:
                    del record.history[:overflow]

            self._persist(record)
            if self._event_log is not None:
                self._event_log.emit(
                    EventKind.VIOLATION_RECORDED,
                    user_id,
                    {
                        "watch_id": watch_id,
                        "count": record.count,
                        "reset": reset,
                        "condition_type": evidence.condition_type,
                        "evidence": evidence.evidence,
                        "confidence": evidence.confidence,
                    },
                    timestamp_utc=now,
                )
            return record.snapshot()

    def get(self, watch_id: str, user_id: str) -> Optional[ViolationRecord]:
        with self._locks.hold((watch_id, user_id)):
            record = self._load(watch_id, user_id)
            return record.snapshot() if record is not None else None

    def count(self, watch_id: str, user_id: str) -> int:
        record = self.get(watch_id, user_id)
        return record.count if record is not None else 0

    def records_for_watch(self, watch_id: str) -> list[ViolationRecord]:
        with self._index_lock:
            keys = [k for k in self._records if k[0] == watch_id]
        out = []
        for key in keys:
            record = self.get(*key)
            if record is not None:
                out.append(record)
        return out

    def clear_watch(self, watch_id: str) -> int:
        """Drop every record of a watch, in memory and in the store."""
        with self._index_lock:
            keys = [k for k in self._records if k[0] == watch_id]
        removed = 0
        for key in keys:
            with self._locks.hold(key):
                with self._index_lock:
                    if self._records.pop(key, None) is not None:
                        removed += 1
        if self._store is not None:
            try:
                for store_key in self._store.keys(f"{_KEY_PREFIX}{watch_id}:"):
                    self._store.delete(store_key)
            except Exception:
                logger.error("Failed to purge stored violations for %s", watch_id, exc_info=True)
        return removed

    def _load(self, watch_id: str, user_id: str) -> Optional[ViolationRecord]:
        key = (watch_id, user_id)
        record = self._records.get(key)
        if record is not None or self._store is None:
            return record
        try:
            data = self._store.get(_store_key(watch_id, user_id))
        except Exception:
            logger.error("Failed to read violations for %s on %s", user_id, watch_id, exc_info=True)
            return None
        if data is None:
            return None
        record = codec.violation_from_dict(data)
        with self._index_lock:
            self._records[key] = record
        return record

    def _persist(self, record: ViolationRecord) -> None:
        if self._store is None:
            return
        try:
            self._store.put(
                _store_key(record.watch_id, record.user_id), codec.violation_to_dict(record),
            )
        except Exception:
            logger.error(
                "Failed to persist violations for %s on %s",
                record.user_id, record.watch_id, exc_info=True,
            )
