"""Target selection — decides whether a watch applies to a user.

A selector matches a user listed in ``user_ids`` or, failing that, a
user satisfying every predicate of its filter. Predicates are evaluated
cheapest first (trust range from the ledger, then member-directory
lookups) and stop at the first that fails. A user the directory does
not know never matches a role or age predicate. Role names compare
case-insensitively.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from warden.models.watch import TargetFilter, TargetSelector
from warden.trust.ledger import TrustLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberInfo:
    user_id: str
    joined_at: datetime
    roles: frozenset[str] = field(default_factory=frozenset)


class MemberDirectory(Protocol):
    """Read-only member snapshot of the chat platform."""

    def get_member(self, scope_id: str, user_id: str) -> Optional[MemberInfo]:
        ...


class InMemoryMemberDirectory:
    """Member directory backed by a dict; used by the CLI and tests."""

    def __init__(self) -> None:
        self._members: dict[tuple[str, str], MemberInfo] = {}
        self._lock = threading.Lock()

    def add(self, scope_id: str, member: MemberInfo) -> None:
        with self._lock:
            self._members[(scope_id, member.user_id)] = member

    def get_member(self, scope_id: str, user_id: str) -> Optional[MemberInfo]:
        with self._lock:
            return self._members.get((scope_id, user_id))


class TargetMatcher:
    """Evaluates target selectors against the ledger and member directory."""

    def __init__(
        self,
        ledger: TrustLedger,
        directory: Optional[MemberDirectory] = None,
    ) -> None:
        self._ledger = ledger
        self._directory = directory

    def matches(
        self,
        target: TargetSelector,
        scope_id: str,
        user_id: str,
        now: datetime,
    ) -> bool:
        if user_id in target.user_ids:
            return True
        if target.filter is None:
            return False
        return self._filter_matches(target.filter, scope_id, user_id, now)

    def member_age_days(self, scope_id: str, user_id: str, now: datetime) -> Optional[float]:
        member = self._member(scope_id, user_id)
        if member is None:
            return None
        return (now - member.joined_at).total_seconds() / 86400.0

    def _filter_matches(
        self, f: TargetFilter, scope_id: str, user_id: str, now: datetime,
    ) -> bool:
        if f.trust_score_min is not None or f.trust_score_max is not None:
            score = self._ledger.get_score(user_id).score
            if f.trust_score_min is not None and score < f.trust_score_min:
                return False
            if f.trust_score_max is not None and score > f.trust_score_max:
                return False

        if not f.needs_member:
            return True
        member = self._member(scope_id, user_id)
        if member is None:
            return False
        roles = {r.casefold() for r in member.roles}
        if f.has_role is not None and f.has_role.casefold() not in roles:
            return False
        if f.lacks_role is not None and f.lacks_role.casefold() in roles:
            return False
        if f.joined_within_days is not None:
            age_days = (now - member.joined_at).total_seconds() / 86400.0
            if age_days > f.joined_within_days:
                return False
        return True

    def _member(self, scope_id: str, user_id: str) -> Optional[MemberInfo]:
        if self._directory is None:
            return None
        try:
            return self._directory.get_member(scope_id, user_id)
        except Exception:
            logger.error("Member lookup failed for %s in %s", user_id, scope_id, exc_info=True)
            return None
