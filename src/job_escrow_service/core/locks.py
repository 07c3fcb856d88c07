"""Per-job asyncio locks."""

from __future__ import annotations

import asyncio
import weakref


class JobLocks:
    """
    Hands out one asyncio.Lock per job id.

    Held across an awaited processor call and the store transaction that
    follows it. Locks are dropped once no coroutine references them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_job(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock
