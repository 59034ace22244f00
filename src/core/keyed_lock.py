"""Lock registry keyed by arbitrary hashable values.

Locks are held weakly, so a key's lock is dropped once no caller holds
or waits on it and the registry stays as large as the set of keys in use.
"""

from __future__ import annotations

import threading
import weakref
from typing import Any, Generic, Hashable, TypeVar

KeyT = TypeVar("KeyT", bound=Hashable)


class KeyLock:
    """Mutex for one key, usable as a context manager."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self, blocking: bool = True, timeout: float = -1) -> bool:
        return self._lock.acquire(blocking, timeout)

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> KeyLock:
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._lock.release()


class KeyedLocks(Generic[KeyT]):
    """Hand out one lock per key so work on distinct keys runs in parallel."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[KeyT, KeyLock] = weakref.WeakValueDictionary()

    def lock_for(self, key: KeyT) -> KeyLock:
        """Return the lock serializing work on one key."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = KeyLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)
