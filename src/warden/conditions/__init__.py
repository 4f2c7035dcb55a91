"""Condition checks: classifier boundary, local heuristics, evaluator."""

from warden.conditions.classifier import BoundedClassifier, Classifier
from warden.conditions.evaluator import ConditionEvaluator

__all__ = ["BoundedClassifier", "Classifier", "ConditionEvaluator"]
