"""
Per-solution mutual exclusion.

Stage transitions are read-recompute-write sequences over a solution and all
of its approvals. Within one process they are serialized by a keyed lock;
across processes the row lock taken in the service (``for_update=True``) and
the ``solutions.version`` counter cover the rest.

A key's lock lives only while some thread holds or waits for it, so the
registry stays as small as the number of solutions in flight.

Usage:
    with solution_lock(solution_id):
        ...
"""

from contextlib import contextmanager
from threading import Lock, RLock

_registry_lock = Lock()
# key -> [lock, number of threads holding or waiting]
_locks: dict[str, list] = {}


@contextmanager
def solution_lock(solution_id):
    """Hold the in-process lock for *solution_id* for the duration of the block."""
    key = str(solution_id)
    with _registry_lock:
        entry = _locks.setdefault(key, [RLock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0:
                del _locks[key]


def active_locks() -> int:
    """Number of solution ids that currently have a lock entry."""
    with _registry_lock:
        return len(_locks)


def reset_locks():
    """Drop all cached locks (for testing)."""
    with _registry_lock:
        _locks.clear()
