"""
Per-requisition serialization for award state changes.

Finalize, respond and expiry for the same requisition run one at a time in
this process. The repository's version check catches writers in other
processes; a conflict is retried once.
"""
import logging
import threading
from typing import Callable, Dict, TypeVar

from backend.award.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequisitionLocks:
    """Registry of one lock per requisition id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def lock_for(self, requisition_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(requisition_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[requisition_id] = lock
            return lock

    def run(self, requisition_id: str, unit_of_work: Callable[[], T], retries: int = 1) -> T:
        """
        Run ``unit_of_work`` holding the requisition's lock.

        ``unit_of_work`` must load its state itself so a retry sees fresh
        data. A second ConcurrencyConflict is re-raised to the caller.
        """
        with self.lock_for(requisition_id):
            attempt = 0
            while True:
                try:
                    return unit_of_work()
                except ConcurrencyConflict:
                    if attempt >= retries:
                        raise
                    attempt += 1
                    logger.warning(
                        "[RequisitionLocks] Concurrency conflict on %s, retrying (%d/%d)",
                        requisition_id, attempt, retries,
                    )


# Singleton
_locks = None


def get_requisition_locks() -> RequisitionLocks:
    global _locks
    if _locks is None:
        _locks = RequisitionLocks()
    return _locks
