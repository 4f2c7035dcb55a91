"""Enforcement effector boundary.

The effector is the only collaborator with real-world side effects and
no rollback. Implementations return an EffectorResponse; raising is
also tolerated (the evaluator converts it into a FAILED result).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from warden.models.enforcement import ActionKind, EffectorResponse

logger = logging.getLogger(__name__)


class EnforcementEffector(Protocol):
    def execute(
        self, action: ActionKind, user_id: str, parameters: dict[str, Any],
    ) -> EffectorResponse:
        ...


class LoggingEffector:
    """Dry-run effector: logs and remembers every action, enforces nothing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[ActionKind, str, dict[str, Any]]] = []

    def execute(
        self, action: ActionKind, user_id: str, parameters: dict[str, Any],
    ) -> EffectorResponse:
        with self._lock:
            self.calls.append((action, user_id, dict(parameters)))
        logger.info("[dry-run] %s -> %s %s", action.value, user_id, parameters or "")
        return EffectorResponse(success=True, message=f"dry-run {action.value}")
