"""Escalation resolver — maps a violation count to a ladder stage."""

from __future__ import annotations

from typing import Optional

from warden.models.watch import EscalationConfig, EscalationStage


class EscalationResolver:
    """Selects the highest stage whose threshold the count has reached.

    Stages are scanned in ascending threshold order (stable, so among
    equal thresholds the later-configured stage wins). Returns None
    below the first threshold or when escalation is disabled.
    """

    def resolve(
        self, escalation: Optional[EscalationConfig], violation_count: int,
    ) -> Optional[EscalationStage]:
        if escalation is None or not escalation.enabled:
            return None
        selected = None
        for stage in sorted(escalation.stages, key=lambda s: s.violation_count):
            if stage.violation_count <= violation_count:
                selected = stage
            else:
                break
        return selected

    def next_stage(
        self, escalation: Optional[EscalationConfig], violation_count: int,
    ) -> Optional[EscalationStage]:
        """The first stage not yet reached, for reporting."""
        if escalation is None or not escalation.enabled:
            return None
        for stage in sorted(escalation.stages, key=lambda s: s.violation_count):
            if stage.violation_count > violation_count:
                return stage
        return None
