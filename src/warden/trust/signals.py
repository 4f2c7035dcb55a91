"""Core-violation assessment — global trust impact of universal violations.

Core violations (profanity, hate speech, scams, doxxing, ...) lower a
user's global trust regardless of which scope they happened in. Watch
triggers are scope-local; these are not.

Rules:
- Findings below ``core_violations.min_confidence`` are dropped.
- Each kept finding applies its tabled penalty (type x severity) as one
  negative TrustLedger delta.
- The most severe kept finding decides the enforcement suggestion.
- A failing or slow detector never raises: the assessor falls back to a
  profanity keyword scan.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from warden.concurrency import call_with_timeout
from warden.conditions.heuristics import TOXIC_KEYWORDS
from warden.models.classification import (
    CoreViolationType,
    ViolationFinding,
    ViolationSeverity,
)
from warden.models.trust import TrustScore
from warden.persistence.event_log import EventKind, EventLog
from warden.policy.resolver import PolicyResolver, SeverityEnforcement
from warden.trust.ledger import TrustLedger

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.9

_SEVERITY_ORDER = [
    ViolationSeverity.LOW,
    ViolationSeverity.MEDIUM,
    ViolationSeverity.HIGH,
    ViolationSeverity.CRITICAL,
]


class ViolationDetector(Protocol):
    """External detector of core violations in a piece of content."""

    def detect(self, content: str) -> list[ViolationFinding]:
        ...


@dataclass(frozen=True)
class CoreAssessment:
    """Result of assessing one message for core violations."""
    user_id: str
    findings: tuple[ViolationFinding, ...]
    total_penalty: float
    trust: TrustScore
    enforcement: Optional[SeverityEnforcement] = None
    used_fallback: bool = False
    dropped: tuple[ViolationFinding, ...] = field(default=())

    @property
    def violated(self) -> bool:
        return bool(self.findings)


def keyword_findings(content: str) -> list[ViolationFinding]:
    """Deterministic profanity scan used when no detector answers."""
    lowered = content.lower()
    hits = [kw for kw in TOXIC_KEYWORDS if re.search(rf"\b{re.escape(kw)}\b", lowered)]
    if not hits:
        return []
    return [
        ViolationFinding(
            violation_type=CoreViolationType.PROFANITY,
            severity=ViolationSeverity.LOW,
            confidence=FALLBACK_CONFIDENCE,
            evidence=f"Keyword fallback: {', '.join(hits)}",
        )
    ]


class CoreViolationAssessor:
    """Applies tabled trust penalties for detected core violations.

    Usage:
        assessor = CoreViolationAssessor(resolver, ledger, detector=my_detector)
        assessment = assessor.assess("u1", "some message")
        if assessment.enforcement:
            ...
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: TrustLedger,
        detector: Optional[ViolationDetector] = None,
        event_log: Optional[EventLog] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._detector = detector
        self._event_log = event_log
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=resolver.classifier_workers(),
            thread_name_prefix="violation-detector",
        )

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def assess(
        self,
        user_id: str,
        content: str,
        context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> CoreAssessment:
        findings, used_fallback = self._detect(content)
        min_confidence = self._resolver.core_violation_min_confidence()
        kept = tuple(f for f in findings if f.confidence >= min_confidence)
        dropped = tuple(f for f in findings if f.confidence < min_confidence)

        total = 0.0
        trust = None
        for finding in kept:
            penalty = self._resolver.core_violation_penalty(
                finding.violation_type, finding.severity,
            )
            total += penalty
            ctx = dict(context or {})
            ctx.update({
                "violation_type": finding.violation_type.value,
                "severity": finding.severity.value,
                "confidence": finding.confidence,
                "evidence": finding.evidence,
            })
            trust = self._ledger.apply_delta(
                user_id,
                -penalty,
                f"Core violation: {finding.violation_type.value} ({finding.severity.value})",
                ctx,
                now,
            )
            if self._event_log is not None:
                self._event_log.emit(
                    EventKind.CORE_VIOLATION_DETECTED,
                    user_id,
                    {
                        "violation_type": finding.violation_type.value,
                        "severity": finding.severity.value,
                        "confidence": finding.confidence,
                        "penalty": penalty,
                        "evidence": finding.evidence,
                        "fallback": used_fallback,
                    },
                    timestamp_utc=now,
                )
            logger.warning(
                "Core violation by %s: %s/%s (-%g trust)",
                user_id, finding.violation_type.value, finding.severity.value, penalty,
            )

        if trust is None:
            trust = self._ledger.get_score(user_id, now)

        enforcement = None
        if kept:
            worst = max(kept, key=lambda f: _SEVERITY_ORDER.index(f.severity))
            enforcement = self._resolver.core_violation_enforcement(worst.severity)

        return CoreAssessment(
            user_id=user_id,
            findings=kept,
            total_penalty=total,
            trust=trust,
            enforcement=enforcement,
            used_fallback=used_fallback,
            dropped=dropped,
        )

    def _detect(self, content: str) -> tuple[list[ViolationFinding], bool]:
        if self._detector is None:
            return keyword_findings(content), True
        try:
            result = call_with_timeout(
                self._executor,
                self._resolver.classifier_timeout(),
                self._detector.detect,
                content,
            )
        except FuturesTimeout:
            logger.warning("Violation detector timed out; using keyword fallback")
            return keyword_findings(content), True
        except Exception:
            logger.error("Violation detector failed; using keyword fallback", exc_info=True)
            return keyword_findings(content), True

        if not isinstance(result, (list, tuple)) or not all(
            isinstance(f, ViolationFinding) for f in result
        ):
            logger.warning("Violation detector returned malformed output; using keyword fallback")
            return keyword_findings(content), True
        return list(result), False
