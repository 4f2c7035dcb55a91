"""State stores — key/value persistence behind a repository interface.

Three implementations share one contract:
- InMemoryStateStore: lock-guarded dict with optional per-key TTL.
- JsonFileStateStore: one JSON document on disk, atomically replaced
  on every write so a crash never leaves a half-written file.
- CachedStateStore: a fast cache in front of a durable store. Cache
  failures degrade to direct durable reads; durable write failures are
  raised as StateStoreError for the caller to log.

Values are plain JSON-compatible dicts produced by warden.persistence.codec.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional, Protocol

from warden.errors import StateStoreError

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Storage contract used by the ledger, tracker and registry."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> list[str]:
        ...


class InMemoryStateStore:
    """Thread-safe in-memory store with optional TTL (seconds)."""

    def __init__(self, clock=time.monotonic) -> None:
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if expiry is not None and self._clock() >= expiry:
                del self._data[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expiry = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._data[key] = (value, expiry)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        now = self._clock()
        with self._lock:
            return sorted(
                k for k, (_, expiry) in self._data.items()
                if k.startswith(prefix) and (expiry is None or now < expiry)
            )


class JsonFileStateStore:
    """Durable store backed by a single JSON document.

    TTLs are not supported on disk; a ttl argument is accepted and
    ignored so the store can stand in for any other implementation.
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = Path(storage_path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {}
        if self._path.exists():
            try:
                self._data = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise StateStoreError(f"Cannot load state from {self._path}: {exc}") from exc

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def _flush(self) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._data, sort_keys=True, indent=1), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise StateStoreError(f"Cannot write state to {self._path}: {exc}") from exc


class CachedStateStore:
    """Read-through / write-through cache in front of a durable store."""

    def __init__(
        self,
        cache: StateStore,
        durable: StateStore,
        cache_ttl: Optional[float] = 300.0,
    ) -> None:
        self._cache = cache
        self._durable = durable
        self._cache_ttl = cache_ttl

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self._cache.get(key)
        except Exception:
            logger.warning("Cache read failed for %s, reading durable store", key, exc_info=True)
            return self._durable.get(key)
        if value is not None:
            return value
        value = self._durable.get(key)
        if value is not None:
            self._fill(key, value)
        return value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._fill(key, value, ttl)
        self._durable.put(key, value, ttl)

    def delete(self, key: str) -> None:
        try:
            self._cache.delete(key)
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)
        self._durable.delete(key)

    def keys(self, prefix: str = "") -> list[str]:
        return self._durable.keys(prefix)

    def _fill(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        try:
            self._cache.put(key, value, ttl if ttl is not None else self._cache_ttl)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
