"""Per-key locking and periodic background tasks.

All mutations to one user's trust score, or to one (watch, user)
violation record, are serialized through a KeyedLock. Locks are
re-entrant and reference-counted so that idle keys do not accumulate.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from typing import Callable, Hashable, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLock:
    """One re-entrant lock per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [RLock, refcount]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class PeriodicTask:
    """Runs ``fn`` every ``interval`` seconds on a daemon thread.

    A failing run is logged and the schedule continues. ``stop`` wakes
    the thread immediately and joins it.

    Usage:
        task = PeriodicTask("watch-expiry", 60.0, registry.sweep_expired)
        task.start()
        ...
        task.stop()
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._name = name
        self._interval = interval
        self._fn = fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Started periodic task %s (every %.1fs)", self._name, self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Stopped periodic task %s", self._name)

    def run_once(self) -> None:
        try:
            self._fn()
        except Exception:
            logger.error("Periodic task %s failed", self._name, exc_info=True)
        finally:
            self.runs += 1

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self.run_once()


def call_with_timeout(
    executor: Executor,
    timeout: float,
    fn: Callable[..., T],
    *args: object,
) -> T:
    """Run ``fn(*args)`` on ``executor`` and wait at most ``timeout`` seconds.

    Raises concurrent.futures.TimeoutError when the deadline passes; the
    worker is left to finish in the background and its result dropped.
    Exceptions raised by ``fn`` propagate unchanged.
    """
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout:
        future.cancel()
        raise
