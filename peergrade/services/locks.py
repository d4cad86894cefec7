"""
In-process keyed locks.

Writers in one process that must not interleave are serialized here with one
asyncio.Lock per key. Entries are weakly held, so a key's lock is dropped as
soon as no holder or waiter references it. Limits that must hold across
processes are enforced by the database writes themselves.
"""
import asyncio
import weakref
from typing import Hashable

_locks: "weakref.WeakValueDictionary" = weakref.WeakValueDictionary()


def keyed_lock(namespace: str, key: Hashable) -> asyncio.Lock:
    """Get (or create) the lock for a namespace/key pair."""
    lock_key = (namespace, key)
    lock = _locks.get(lock_key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[lock_key] = lock
    return lock
