"""Scheduler tests with an in-memory advisory lock double.

Covers:
1. Mutual exclusion between instances sharing a key
2. Lock released on every exit path
3. Runner failures do not stop the loop
4. Lock check failures abort the loop
5. Cancellation

Run:
    pytest tests/test_scheduler.py -v
"""

import threading

import pytest

from p1_ingest_services.ingest.errors import (
    FetchError,
    LockCheckError,
    OperationCancelled,
    PersistError,
    ReadingLostError,
)
from p1_ingest_services.jobs.scheduler import DEFAULT_INTERVAL_SECONDS, CycleOutcome, Scheduler


# =============================================================================
# TEST DOUBLES
# =============================================================================

class InMemoryLockStore:
    """Stands in for the database server's advisory lock table."""

    def __init__(self):
        self.held = set()
        self.releases = 0
        self._mutex = threading.Lock()


class FakeLease:
    def __init__(self, store, key, release_ok=True):
        self._store = store
        self._key = key
        self._release_ok = release_ok

    def release(self) -> bool:
        with self._store._mutex:
            self._store.held.discard(self._key)
            self._store.releases += 1
        return self._release_ok


class FakeLock:
    def __init__(self, store, key=42, release_ok=True, check_error=None):
        self._store = store
        self._key = key
        self._release_ok = release_ok
        self._check_error = check_error

    def try_acquire(self):
        if self._check_error is not None:
            raise self._check_error
        with self._store._mutex:
            if self._key in self._store.held:
                return None
            self._store.held.add(self._key)
        return FakeLease(self._store, self._key, self._release_ok)


@pytest.fixture
def store():
    return InMemoryLockStore()


@pytest.fixture
def stop_event():
    return threading.Event()


# =============================================================================
# TEST 1: MUTUAL EXCLUSION
# =============================================================================

class TestMutualExclusion:
    """Two schedulers on the same key never run the cycle concurrently."""

    def test_second_instance_skips_while_first_runs(self, store, stop_event):
        first = Scheduler(FakeLock(store), interval_seconds=1)
        second = Scheduler(FakeLock(store), interval_seconds=1)
        calls = []
        nested = {}

        def second_runner(stop):
            calls.append("second")

        def first_runner(stop):
            calls.append("first")
            nested["outcome"] = second.try_run_once(second_runner, stop)

        assert first.try_run_once(first_runner, stop_event) is CycleOutcome.SUCCEEDED
        assert nested["outcome"] is CycleOutcome.SKIPPED
        assert calls == ["first"]
        assert second.stats["cycles_skipped"] == 1

    def test_lock_free_after_cycle(self, store, stop_event):
        first = Scheduler(FakeLock(store))
        second = Scheduler(FakeLock(store))

        first.try_run_once(lambda stop: None, stop_event)

        assert second.try_run_once(lambda stop: None, stop_event) is CycleOutcome.SUCCEEDED

    def test_different_keys_do_not_exclude(self, store, stop_event):
        other = Scheduler(FakeLock(store, key=7))
        outcomes = []

        Scheduler(FakeLock(store, key=42)).try_run_once(
            lambda stop: outcomes.append(other.try_run_once(lambda s: None, stop)),
            stop_event,
        )

        assert outcomes == [CycleOutcome.SUCCEEDED]

    def test_concurrent_threads(self, store):
        """Under real threads the runner never overlaps with itself."""
        active = []
        overlaps = []
        guard = threading.Lock()

        def runner(stop):
            with guard:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
            threading.Event().wait(0.01)
            with guard:
                active.pop()

        def worker():
            scheduler = Scheduler(FakeLock(store))
            for _ in range(20):
                scheduler.try_run_once(runner, threading.Event())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []


# =============================================================================
# TEST 2: LOCK RELEASE
# =============================================================================

class TestLockRelease:
    """The lease is released whatever the runner does."""

    def test_released_after_success(self, store, stop_event):
        Scheduler(FakeLock(store)).try_run_once(lambda stop: None, stop_event)

        assert store.held == set()
        assert store.releases == 1

    def test_released_after_runner_error(self, store, stop_event):
        def runner(stop):
            raise FetchError("meter unreachable")

        outcome = Scheduler(FakeLock(store)).try_run_once(runner, stop_event)

        assert outcome is CycleOutcome.FAILED
        assert store.held == set()

    def test_released_after_cancellation(self, store, stop_event):
        def runner(stop):
            raise OperationCancelled("stop")

        Scheduler(FakeLock(store)).try_run_once(runner, stop_event)

        assert store.releases == 1

    def test_release_failure_is_counted(self, store, stop_event):
        scheduler = Scheduler(FakeLock(store, release_ok=False))

        outcome = scheduler.try_run_once(lambda stop: None, stop_event)

        assert outcome is CycleOutcome.SUCCEEDED
        assert scheduler.stats["lock_release_failures"] == 1


# =============================================================================
# TEST 3: RUNNER FAILURES
# =============================================================================

class TestRunnerFailures:
    """Cycle errors are logged and counted; they never stop the scheduler."""

    def test_failure_counted(self, store, stop_event):
        scheduler = Scheduler(FakeLock(store))

        def runner(stop):
            raise PersistError("db down")

        scheduler.try_run_once(runner, stop_event)

        assert scheduler.stats["cycles_failed"] == 1
        assert scheduler.stats["cycles_run"] == 1

    def test_reading_lost_reported(self, store, stop_event):
        reported = []
        scheduler = Scheduler(FakeLock(store), on_cycle_error=reported.append)
        lost = ReadingLostError(PersistError("db down"), OSError("disk full"))

        def runner(stop):
            raise lost

        scheduler.try_run_once(runner, stop_event)

        assert scheduler.stats["readings_lost"] == 1
        assert reported == [lost]

    def test_failing_callback_does_not_escape(self, store, stop_event):
        def callback(error):
            raise RuntimeError("alerting down")

        def runner(stop):
            raise FetchError("timeout")

        scheduler = Scheduler(FakeLock(store), on_cycle_error=callback)

        assert scheduler.try_run_once(runner, stop_event) is CycleOutcome.FAILED

    def test_loop_continues_after_failure(self, store, stop_event):
        calls = []

        def runner(stop):
            calls.append(1)
            if len(calls) == 1:
                raise FetchError("first cycle fails")
            stop.set()

        scheduler = Scheduler(FakeLock(store), interval_seconds=0.01)

        with pytest.raises(OperationCancelled):
            scheduler.run(runner, stop_event)

        assert len(calls) == 2
        assert scheduler.stats["cycles_failed"] == 1


# =============================================================================
# TEST 4: LOCK CHECK FAILURES
# =============================================================================

class TestLockCheckFailure:
    """A failing lock query is not 'lock busy': it aborts the scheduler."""

    def test_try_run_once_raises(self, store, stop_event):
        scheduler = Scheduler(FakeLock(store, check_error=LockCheckError("db unreachable")))
        calls = []

        with pytest.raises(LockCheckError):
            scheduler.try_run_once(calls.append, stop_event)

        assert calls == []

    def test_run_aborts(self, store, stop_event):
        scheduler = Scheduler(FakeLock(store, check_error=LockCheckError("db unreachable")), interval_seconds=0.01)

        with pytest.raises(LockCheckError):
            scheduler.run(lambda stop: None, stop_event)


# =============================================================================
# TEST 5: CADENCE AND CANCELLATION
# =============================================================================

class TestRunLoop:
    """First attempt is immediate; a set stop event ends the loop."""

    def test_stopped_before_start(self, store, stop_event):
        calls = []
        stop_event.set()

        with pytest.raises(OperationCancelled):
            Scheduler(FakeLock(store)).run(calls.append, stop_event)

        assert calls == []

    def test_first_attempt_immediate(self, store, stop_event):
        """With a one-hour interval the first cycle still runs at once."""
        calls = []

        def runner(stop):
            calls.append(1)
            stop.set()

        with pytest.raises(OperationCancelled):
            Scheduler(FakeLock(store), interval_seconds=3600).run(runner, stop_event)

        assert calls == [1]

    def test_stop_from_another_thread(self, store, stop_event):
        scheduler = Scheduler(FakeLock(store), interval_seconds=3600)
        errors = []

        def target():
            try:
                scheduler.run(lambda stop: None, stop_event)
            except OperationCancelled as e:
                errors.append(e)

        thread = threading.Thread(target=target)
        thread.start()
        stop_event.set()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(errors) == 1
        assert store.held == set()

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval_uses_default(self, store, interval):
        assert Scheduler(FakeLock(store), interval_seconds=interval).interval_seconds == DEFAULT_INTERVAL_SECONDS

    def test_default_interval_is_one_minute(self, store):
        assert Scheduler(FakeLock(store)).interval_seconds == 60.0
