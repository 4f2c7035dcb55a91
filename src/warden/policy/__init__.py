"""Engine parameters and watch configuration validation."""

from warden.policy.resolver import PolicyResolver
from warden.policy.validation import WatchValidator

__all__ = ["PolicyResolver", "WatchValidator"]
