"""Watches: target selection and the active-rule registry."""

from warden.watch.registry import WatchRegistry
from warden.watch.selector import InMemoryMemberDirectory, MemberDirectory, MemberInfo, TargetMatcher

__all__ = [
    "WatchRegistry",
    "InMemoryMemberDirectory",
    "MemberDirectory",
    "MemberInfo",
    "TargetMatcher",
]
