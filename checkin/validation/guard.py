"""Per-key locks serializing concurrent check-in attempts.

Several stations can scan the same attendee moments apart, and clients
retry uploads. Attempts that land on the same registration, or carry the
same photo, must run one after the other so the second one sees the first
one's result before checking its own preconditions.
"""
import hashlib
import threading
from collections.abc import Callable, Hashable
from contextlib import contextmanager
from typing import TypeVar

from checkin.biometrics.encoding import canonical_id

T = TypeVar("T")


class LockRegistry:
    """A lock per key, created on first use and dropped when idle."""

    def __init__(self):
        self._mutex = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, holders and waiters]

    @contextmanager
    def locked(self, key: Hashable):
        """Hold the lock for ``key`` for the duration of the block."""
        with self._mutex:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            entry[0].acquire()
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._mutex:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def with_lock(self, key: Hashable, fn: Callable[..., T], *args, **kwargs) -> T:
        """Call ``fn`` while holding the lock for ``key``."""
        with self.locked(key):
            return fn(*args, **kwargs)

    def active_keys(self) -> int:
        with self._mutex:
            return len(self._locks)


def registration_lock_key(event_id, registration_id) -> tuple:
    """Lock key for one registration within an event's check-in session."""
    return ("registration", canonical_id(event_id), canonical_id(registration_id))


def photo_lock_key(event_id, photo: bytes) -> tuple:
    """Lock key for one uploaded photo."""
    return ("photo", canonical_id(event_id), hashlib.sha256(photo).hexdigest())


# Shared by every request in the process
check_in_locks = LockRegistry()
