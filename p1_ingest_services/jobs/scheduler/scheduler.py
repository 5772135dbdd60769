"""Periodic runner guarded by a cross-process advisory lock.

Cycle:  Idle -> AcquireAttempt -> Acquired -> Running -> Released -> Idle
                               \\-> NotAcquired -> Idle

- First attempt runs immediately, then one attempt per interval tick.
- A failing lock CHECK aborts the scheduler (LockCheckError).
- A lock held elsewhere skips the tick.
- Runner exceptions are logged and counted; the loop keeps going.
- The lock is released on every exit path, even after a stop request.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Protocol

from p1_ingest_services.ingest.errors import OperationCancelled, ReadingLostError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0

Runner = Callable[[threading.Event], object]


class Lease(Protocol):
    def release(self) -> bool: ...


class AdvisoryLock(Protocol):
    def try_acquire(self) -> Optional[Lease]: ...


class CycleOutcome(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Scheduler:
    """Runs ``runner`` every ``interval_seconds`` while holding ``lock``."""

    def __init__(
        self,
        lock: AdvisoryLock,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        on_cycle_error: Optional[Callable[[Exception], None]] = None,
    ):
        if interval_seconds <= 0:
            interval_seconds = DEFAULT_INTERVAL_SECONDS
        self._lock = lock
        self._interval = float(interval_seconds)
        self._on_cycle_error = on_cycle_error

        self._cycles_run = 0
        self._cycles_skipped = 0
        self._cycles_failed = 0
        self._readings_lost = 0
        self._lock_release_failures = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def stats(self) -> dict:
        return {
            "interval_seconds": self._interval,
            "cycles_run": self._cycles_run,
            "cycles_skipped": self._cycles_skipped,
            "cycles_failed": self._cycles_failed,
            "readings_lost": self._readings_lost,
            "lock_release_failures": self._lock_release_failures,
        }

    def run(self, runner: Runner, stop_event: threading.Event) -> None:
        """Loop until ``stop_event`` is set.

        Raises:
            OperationCancelled: always, once the stop event is set
            LockCheckError: the advisory lock query failed
        """
        logger.info("[Scheduler] Started interval=%.1fs", self._interval)
        next_tick = time.monotonic()

        while True:
            if stop_event.is_set():
                break
            self.try_run_once(runner, stop_event)

            # Fixed cadence; ticks missed by a long cycle are dropped.
            next_tick += self._interval
            now = time.monotonic()
            if next_tick < now:
                missed = int((now - next_tick) // self._interval) + 1
                next_tick += missed * self._interval
            if stop_event.wait(next_tick - now):
                break

        logger.info("[Scheduler] Stopped. %s", self.stats)
        raise OperationCancelled("scheduler stopped")

    def try_run_once(self, runner: Runner, stop_event: threading.Event) -> CycleOutcome:
        lease = self._lock.try_acquire()
        if lease is None:
            self._cycles_skipped += 1
            logger.info("[Scheduler] Lock held by another instance, skipping cycle")
            return CycleOutcome.SKIPPED

        outcome = CycleOutcome.SUCCEEDED
        try:
            self._cycles_run += 1
            runner(stop_event)
        except OperationCancelled:
            logger.info("[Scheduler] Cycle cancelled")
            outcome = CycleOutcome.FAILED
        except ReadingLostError as e:
            self._cycles_failed += 1
            self._readings_lost += 1
            logger.critical("[Scheduler] READING_LOST cycle failed and payload was not buffered: %s", e)
            self._report(e)
            outcome = CycleOutcome.FAILED
        except Exception as e:
            self._cycles_failed += 1
            logger.error("[Scheduler] Cycle failed: %s", e)
            self._report(e)
            outcome = CycleOutcome.FAILED
        finally:
            if not lease.release():
                self._lock_release_failures += 1

        return outcome

    def _report(self, error: Exception) -> None:
        if self._on_cycle_error is None:
            return
        try:
            self._on_cycle_error(error)
        except Exception:
            logger.exception("[Scheduler] on_cycle_error callback failed")
