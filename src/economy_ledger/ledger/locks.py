"""Per-user lock pool.

All mutations for one user are serialized through that user's lock, while
unrelated users proceed in parallel. Operations touching several users
(trades, trade reversals, wipes that clear a counterpart's trade records)
acquire every lock in sorted id order and release in reverse, so two
multi-user operations can never wait on each other in a cycle.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from economy_ledger.ledger.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class UserLockManager:
    """Lazily created ``threading.Lock`` per user id."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_mutex = threading.Lock()

    def _get_lock(self, user_id: str) -> threading.Lock:
        """Return the lock for a user, creating it on first use."""
        with self._locks_mutex:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, *user_ids: str, timeout: float | None = None) -> Iterator[list[str]]:
        """
        Hold the locks of every distinct user in ``user_ids``.

        Locks are taken in sorted order. The timeout bounds the total wait
        across all of them; on expiry any lock already taken is released and
        :exc:`ConcurrencyConflict` is raised.

        Yields:
            The sorted list of locked user ids.
        """
        lock_order = sorted(set(user_ids))
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        acquired: list[threading.Lock] = []
        try:
            for user_id in lock_order:
                lock = self._get_lock(user_id)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    logger.warning("Lock timeout for %s (order=%s)", user_id, lock_order)
                    raise ConcurrencyConflict(lock_order, budget)
                acquired.append(lock)
            yield lock_order
        finally:
            for lock in reversed(acquired):
                lock.release()
