"""Per-key mutual exclusion for recurrences and installment groups."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from tally.config import settings
from tally.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    """
    Hands out one lock per key (a recurrence id or a group id).

    Locks are reference counted and dropped once nobody holds or waits on
    them, so the registry does not grow with the number of keys ever seen.
    """

    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _release_ref(self, key: str) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for key, raising ConcurrencyConflict after timeout seconds."""
        if timeout is None:
            timeout = settings.lock_timeout_seconds
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"Lock contention on {self.name} {key}")
                raise ConcurrencyConflict(
                    f"{self.name} {key} is being modified by another request",
                    {"key": key},
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release_ref(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()


recurrence_locks = KeyedLockRegistry("recurrence")
group_locks = KeyedLockRegistry("installment group")
