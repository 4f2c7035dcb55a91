"""Trust score and trust event data models.

Trust in the engine is:
- Global per user (not per scope), created lazily at the neutral default.
- Bounded to [min_score, max_score] (0..100 under the shipped config).
- Banded into five ordered levels by fixed thresholds (engine_params.json).
- Append-only history, bounded to the most recent ``history_limit`` events.
- Irrevocably locked at zero once a permanent floor is set.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class TrustLevel(str, enum.Enum):
    """Ordered reputation bands, lowest first."""
    DANGEROUS = "dangerous"
    CAUTIOUS = "cautious"
    NEUTRAL = "neutral"
    TRUSTED = "trusted"
    EXEMPLARY = "exemplary"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [
    TrustLevel.DANGEROUS,
    TrustLevel.CAUTIOUS,
    TrustLevel.NEUTRAL,
    TrustLevel.TRUSTED,
    TrustLevel.EXEMPLARY,
]


@dataclass(frozen=True)
class TrustEvent:
    """A single immutable change to a user's trust score.

    ``delta`` is the change that was requested. ``score_before`` and
    ``score_after`` record what the bounded arithmetic actually produced.
    """
    timestamp: datetime
    delta: float
    reason: str
    context: dict[str, Any] = field(default_factory=dict)
    score_before: Optional[float] = None
    score_after: Optional[float] = None

    @property
    def applied_delta(self) -> float:
        if self.score_before is None or self.score_after is None:
            return self.delta
        return self.score_after - self.score_before


@dataclass
class TrustScore:
    """Current trust state for a single user.

    Invariants enforced by TrustLedger:
    - min_score <= score <= max_score after every mutation.
    - level is a pure function of score.
    - permanently_locked implies score == min_score, forever.
    - len(history) <= history_limit (oldest evicted first).

    ``last_updated`` tracks the last activity; ``last_decayed`` tracks how
    far inactivity decay has already been accounted for, so periodic
    sweeps never apply the same idle time twice.
    """
    user_id: str
    score: float
    level: TrustLevel
    last_updated: datetime
    joined_at: datetime
    history: list[TrustEvent] = field(default_factory=list)
    permanently_locked: bool = False
    last_decayed: Optional[datetime] = None

    def snapshot(self) -> TrustScore:
        """Return a detached copy safe to hand to other threads."""
        return TrustScore(
            user_id=self.user_id,
            score=self.score,
            level=self.level,
            last_updated=self.last_updated,
            joined_at=self.joined_at,
            history=list(self.history),
            permanently_locked=self.permanently_locked,
            last_decayed=self.last_decayed,
        )


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a redemption check, suitable for audit or announcement."""
    redeemed: bool
    points: float
    reason: str


@dataclass(frozen=True)
class RedemptionProgress:
    """How far a low-trust user is from the neutral target."""
    can_redeem: bool
    current_score: float
    target_score: float
    points_needed: float
    recent_good_behaviors: int
    suggestion: str


@dataclass(frozen=True)
class DecayReport:
    """Summary of one decay sweep."""
    examined: int
    decayed: int
    skipped_locked: int
