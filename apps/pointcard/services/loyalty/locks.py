from __future__ import annotations

import threading
import time
import weakref
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from apps.pointcard.services.errors import UpstreamUnavailable
from apps.pointcard.services.loyalty.models import normalize_id


class CustomerLocks:
    """
    In-process per-customer mutexes.

    Serializes read-balance -> decide -> write -> update-aggregate for one
    customer inside this process. Re-entrant so a redemption can hold the lock
    across its balance check and the ledger write it triggers.
    Writers in other processes are not covered; reconcile repairs that drift.
    A lock lives only while some caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()

    def _lock_for(self, customer_id: str) -> threading.RLock:
        key = normalize_id(customer_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, customer_id: str) -> Iterator[None]:
        lock = self._lock_for(customer_id)
        with lock:
            yield


class Deadline:
    """
    Monotonic time limit for one request, checked between protocol steps.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.expires_at = clock() + float(seconds)

    @classmethod
    def after(cls, seconds: Optional[float]) -> Optional["Deadline"]:
        if not seconds or seconds <= 0:
            return None
        return cls(seconds)

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    def check(self, step: str) -> None:
        if self.remaining() <= 0:
            raise UpstreamUnavailable("deadline exceeded", detail={"step": step})


def check_deadline(deadline: Optional[Deadline], step: str) -> None:
    if deadline is not None:
        deadline.check(step)
