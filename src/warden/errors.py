"""Exception hierarchy for the engine.

Only configuration and validation errors are meant to reach callers.
Classifier, persistence and enforcement failures are recovered locally
and surface as degraded results plus a log line.
"""

from __future__ import annotations


class WardenError(Exception):
    """Base class for all engine errors."""


class ConfigError(WardenError):
    """Raised when engine parameters violate an invariant."""


class ValidationError(WardenError):
    """Raised when a watch configuration is rejected at creation time.

    ``problems`` holds every issue found, not just the first one.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid configuration")


class ClassifierError(WardenError):
    """Raised by classifier adapters on timeout or malformed output."""


class StateStoreError(WardenError):
    """Raised when a state store cannot read or write a key."""


class EnforcementError(WardenError):
    """Raised by effectors that signal refusal by exception; recorded as FAILED."""
