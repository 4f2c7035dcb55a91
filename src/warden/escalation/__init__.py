"""Violation tracking and escalation-ladder resolution."""

from warden.escalation.resolver import EscalationResolver
from warden.escalation.tracker import ViolationTracker

__all__ = ["EscalationResolver", "ViolationTracker"]
