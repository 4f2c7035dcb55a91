"""Conditional action evaluator — resolves if/else action trees.

Rules:
- A node whose condition is absent, ``always``, or holds is executed.
- A failing condition recurses into ``else_action``; without one the
  result is SKIPPED, never an error.
- Condition lookups read only the RuntimeContext; a value the context
  does not have makes the condition false.
- Effector failures (negative response or exception) become FAILED
  results. Nothing is retried and nothing already recorded is undone.
- Batches run every action, whatever happened to the previous one.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from warden.actions.effector import EnforcementEffector
from warden.models.enforcement import ActionKind, ExecutionResult, ExecutionStatus
from warden.models.watch import (
    ActionCondition,
    ActionConditionType,
    ConditionalAction,
    Operator,
)
from warden.persistence.event_log import EventKind, EventLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeContext:
    """Facts about the target user at the moment actions are resolved."""
    user_id: str
    trust_score: Optional[float] = None
    violation_count: int = 0
    user_age_days: Optional[float] = None
    message_count: Optional[int] = None
    watch_id: Optional[str] = None


_OPERATORS: dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: operator.gt,
    Operator.LT: operator.lt,
    Operator.GE: operator.ge,
    Operator.LE: operator.le,
    Operator.EQ: operator.eq,
    Operator.NE: operator.ne,
}

_LOOKUPS: dict[ActionConditionType, Callable[[RuntimeContext], Optional[float]]] = {
    ActionConditionType.TRUST_SCORE: lambda ctx: ctx.trust_score,
    ActionConditionType.VIOLATION_COUNT: lambda ctx: ctx.violation_count,
    ActionConditionType.USER_AGE_DAYS: lambda ctx: ctx.user_age_days,
    ActionConditionType.MESSAGE_COUNT: lambda ctx: ctx.message_count,
}


def condition_holds(condition: Optional[ActionCondition], context: RuntimeContext) -> bool:
    if condition is None or condition.type == ActionConditionType.ALWAYS:
        return True
    if condition.operator is None or condition.value is None:
        return False
    actual = _LOOKUPS[condition.type](context)
    if actual is None:
        return False
    return _OPERATORS[condition.operator](actual, condition.value)


class ConditionalActionEvaluator:
    """Evaluates action trees and submits chosen actions to the effector.

    Usage:
        evaluator = ConditionalActionEvaluator(effector)
        result = evaluator.evaluate(action, RuntimeContext("u1", trust_score=70))
    """

    def __init__(
        self,
        effector: EnforcementEffector,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._effector = effector
        self._event_log = event_log

    def evaluate(
        self,
        action: ConditionalAction,
        context: RuntimeContext,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        depth = 0
        node: Optional[ConditionalAction] = action
        while node is not None:
            if condition_holds(node.condition, context):
                return self.execute(node.action, context.user_id, node.parameters, depth, context, now)
            node = node.else_action
            depth += 1
        result = ExecutionResult(
            status=ExecutionStatus.SKIPPED,
            user_id=context.user_id,
            message="condition not met and no else action",
            depth=depth - 1,
        )
        self._record(result, context, now)
        return result

    def evaluate_batch(
        self,
        actions: Iterable[ConditionalAction],
        context: RuntimeContext,
        now: Optional[datetime] = None,
    ) -> list[ExecutionResult]:
        return [self.evaluate(action, context, now) for action in actions]

    def execute(
        self,
        kind: ActionKind,
        user_id: str,
        parameters: dict[str, Any],
        depth: int = 0,
        context: Optional[RuntimeContext] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        """Submit one action to the effector; never raises."""
        now = now or datetime.now(timezone.utc)
        params = dict(parameters)
        try:
            response = self._effector.execute(kind, user_id, params)
        except Exception as exc:
            logger.warning("Enforcement %s on %s raised: %s", kind.value, user_id, exc)
            result = ExecutionResult(
                status=ExecutionStatus.FAILED,
                user_id=user_id,
                action=kind,
                parameters=params,
                message=str(exc),
                depth=depth,
                executed_utc=now,
            )
        else:
            status = ExecutionStatus.EXECUTED if response.success else ExecutionStatus.FAILED
            if not response.success:
                logger.warning(
                    "Enforcement %s on %s failed: %s", kind.value, user_id, response.message,
                )
            result = ExecutionResult(
                status=status,
                user_id=user_id,
                action=kind,
                parameters=params,
                message=response.message,
                depth=depth,
                executed_utc=now,
            )
        self._record(result, context, now)
        return result

    def _record(
        self,
        result: ExecutionResult,
        context: Optional[RuntimeContext],
        now: Optional[datetime],
    ) -> None:
        if self._event_log is None:
            return
        kind = {
            ExecutionStatus.EXECUTED: EventKind.ACTION_EXECUTED,
            ExecutionStatus.FAILED: EventKind.ACTION_FAILED,
            ExecutionStatus.SKIPPED: EventKind.ACTION_SKIPPED,
        }[result.status]
        self._event_log.emit(
            kind,
            result.user_id,
            {
                "action": result.action.value if result.action else None,
                "parameters": result.parameters,
                "message": result.message,
                "depth": result.depth,
                "watch_id": context.watch_id if context else None,
            },
            timestamp_utc=now,
        )
