"""Environment slots and per-(application, environment) mutual exclusion.

An environment holds at most one live deployment per application.  The
``EnvironmentLocks`` registry serialises promotions of the same key inside
one process; the slot version kept by the backend catches races with other
processes (compare-and-swap on commit).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from pipewright.errors import ConcurrentPromotionError

logger = logging.getLogger(__name__)


class EnvironmentLocks:
    """One ``threading.Lock`` per (application, environment) key.

    Parameters
    ----------
    timeout:
        Seconds to wait for a busy key before raising
        ``ConcurrentPromotionError``.  ``None`` waits forever.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def is_held(self, application: str, environment: str) -> bool:
        return self._lock_for((application, environment)).locked()

    @contextmanager
    def hold(self, application: str, environment: str) -> Iterator[None]:
        """Hold the key for the duration of the ``with`` block."""
        lock = self._lock_for((application, environment))
        acquired = lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise ConcurrentPromotionError(
                f"Another promotion of '{application}' into '{environment}' is in progress"
            )
        logger.debug("Acquired environment lock %s/%s", application, environment)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released environment lock %s/%s", application, environment)
