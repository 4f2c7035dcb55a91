"""Global trust: bounded scores, decay, redemption, core-violation impact."""

from warden.trust.ledger import TrustLedger
from warden.trust.signals import CoreAssessment, CoreViolationAssessor

__all__ = ["TrustLedger", "CoreAssessment", "CoreViolationAssessor"]
