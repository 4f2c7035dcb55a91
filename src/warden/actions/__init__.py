"""Enforcement boundary and conditional action trees."""

from warden.actions.effector import EnforcementEffector, LoggingEffector
from warden.actions.evaluator import ConditionalActionEvaluator, RuntimeContext

__all__ = [
    "EnforcementEffector",
    "LoggingEffector",
    "ConditionalActionEvaluator",
    "RuntimeContext",
]
