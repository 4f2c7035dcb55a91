"""Persistence — state stores, structured codec, append-only event log."""

from warden.persistence.event_log import EventKind, EventLog, EventRecord
from warden.persistence.state_store import (
    CachedStateStore,
    InMemoryStateStore,
    JsonFileStateStore,
    StateStore,
)

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "CachedStateStore",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "StateStore",
]
