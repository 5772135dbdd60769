from .advisory_lock import LockLease, PostgresAdvisoryLock
from .scheduler import DEFAULT_INTERVAL_SECONDS, CycleOutcome, Scheduler

__all__ = [
    "LockLease",
    "PostgresAdvisoryLock",
    "DEFAULT_INTERVAL_SECONDS",
    "CycleOutcome",
    "Scheduler",
]
