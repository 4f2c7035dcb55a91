"""Tests for keyed locks, periodic tasks and bounded calls."""

import threading
import time
import pytest
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from warden.concurrency import KeyedLock, PeriodicTask, call_with_timeout


class TestKeyedLock:
    def test_reentrant(self) -> None:
        locks = KeyedLock()
        with locks.hold("u1"):
            with locks.hold("u1"):
                assert len(locks) == 1
        assert len(locks) == 0

    def test_same_key_serialized(self) -> None:
        locks = KeyedLock()
        counter = {"value": 0}

        def bump() -> None:
            for _ in range(200):
                with locks.hold("u1"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 800
        assert len(locks) == 0

    def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLock()
        entered = threading.Event()

        def other() -> None:
            with locks.hold("u2"):
                entered.set()

        with locks.hold("u1"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(1.0)
            t.join()


class TestPeriodicTask:
    def test_rejects_bad_interval(self) -> None:
        with pytest.raises(ValueError):
            PeriodicTask("x", 0, lambda: None)

    def test_runs_until_stopped(self) -> None:
        ran = threading.Event()
        task = PeriodicTask("tick", 0.01, ran.set)
        task.start()
        assert task.running
        assert ran.wait(1.0)
        task.stop()
        assert not task.running
        assert task.runs >= 1

    def test_failure_does_not_stop_schedule(self) -> None:
        calls = []

        def flaky() -> None:
            calls.append(1)
            raise RuntimeError("store offline")

        task = PeriodicTask("flaky", 60, flaky)
        task.run_once()
        task.run_once()
        assert len(calls) == 2
        assert task.runs == 2


class TestCallWithTimeout:
    def test_returns_value(self) -> None:
        with ThreadPoolExecutor(max_workers=1) as pool:
            assert call_with_timeout(pool, 1.0, sum, [1, 2, 3]) == 6

    def test_times_out(self) -> None:
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as pool:
            try:
                with pytest.raises(FuturesTimeout):
                    call_with_timeout(pool, 0.05, release.wait, 2.0)
            finally:
                release.set()

    def test_propagates_exception(self) -> None:
        def boom() -> None:
            raise KeyError("missing")

        with ThreadPoolExecutor(max_workers=1) as pool:
            with pytest.raises(KeyError):
                call_with_timeout(pool, 1.0, boom)
