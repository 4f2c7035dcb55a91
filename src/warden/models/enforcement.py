"""Enforcement action kinds and execution outcomes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class ActionKind(str, enum.Enum):
    """Closed set of moderation actions an effector can carry out."""
    WARN = "warn"
    TIMEOUT = "timeout"
    KICK = "kick"
    BAN = "ban"
    DELETE_MESSAGE = "delete_message"
    ADD_ROLE = "add_role"
    REMOVE_ROLE = "remove_role"
    NOTIFY_MODERATORS = "notify_moderators"


class ExecutionStatus(str, enum.Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class EffectorResponse:
    """What an Enforcement Effector reports for one call."""
    success: bool
    message: str = ""


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of resolving and (maybe) executing one conditional action.

    SKIPPED means the action's condition failed and no else-branch
    existed; it is not an error. FAILED means the effector refused or
    raised; bookkeeping that already happened is not rolled back.
    """
    status: ExecutionStatus
    user_id: str
    action: Optional[ActionKind] = None
    parameters: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    depth: int = 0
    executed_utc: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.EXECUTED
