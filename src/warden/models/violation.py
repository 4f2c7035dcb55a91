"""Per-(watch, user) violation bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Evidence:
    """One recorded violation: what condition fired and why."""
    timestamp: datetime
    condition_type: str
    evidence: str
    confidence: float = 0.0


@dataclass
class ViolationRecord:
    """Violation counter for a single user under a single watch.

    If the time since ``first_violation`` exceeds the watch's
    ``reset_after_hours``, the next violation replaces the record with
    count = 1. That is a hard reset, not decay.
    """
    watch_id: str
    user_id: str
    count: int
    first_violation: datetime
    last_violation: datetime
    history: list[Evidence] = field(default_factory=list)

    def snapshot(self) -> ViolationRecord:
        return ViolationRecord(
            watch_id=self.watch_id,
            user_id=self.user_id,
            count=self.count,
            first_violation=self.first_violation,
            last_violation=self.last_violation,
            history=list(self.history),
        )
