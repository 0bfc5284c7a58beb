from __future__ import annotations

import asyncio
import weakref


# Entries disappear once no coroutine holds a reference to the lock.
_request_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def request_lock(request_id: str) -> asyncio.Lock:
    """Return the in-process lock serializing quota-sensitive writes for one request.

    This closes the race inside a single worker; the row lock and the conditional
    insert close it across workers.
    """
    lock = _request_locks.get(request_id)
    if lock is None:
        lock = asyncio.Lock()
        _request_locks[request_id] = lock
    return lock
