"""Per-path FIFO of callers waiting for the next change to a file."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field

from tasksync.errors import WaitTimeoutError
from tasksync.logging import get_logger

log = get_logger("queue")


@dataclass(eq=False)
class Waiter:
    """A suspended request for the next change to ``path``.

    Exactly one of :meth:`resolve` and :meth:`fail` takes effect; the other
    becomes a no-op, as does resolving a waiter whose caller has gone away.
    """

    path: str
    deadline: float
    future: asyncio.Future[str]
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)
    created_at: float = field(default_factory=time.time)

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, content: str) -> bool:
        self.cancel_timer()
        if self.future.done():
            return False
        self.future.set_result(content)
        return True

    def fail(self, exc: BaseException) -> bool:
        self.cancel_timer()
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class WaiterQueue:
    """Waiters grouped by path, each with its own deadline timer."""

    def __init__(self) -> None:
        self._waiters: dict[str, deque[Waiter]] = {}

    def register(self, path: str, timeout: float) -> Waiter:
        """Queue a new waiter for ``path`` that times out after ``timeout`` seconds."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        waiter = Waiter(path=path, deadline=deadline, future=loop.create_future())
        waiter.timer = loop.call_at(deadline, self._expire, waiter, timeout)
        self._waiters.setdefault(path, deque()).append(waiter)
        return waiter

    def remove(self, waiter: Waiter) -> bool:
        """Drop ``waiter`` from its queue and cancel its timer."""
        waiter.cancel_timer()
        queue = self._waiters.get(waiter.path)
        if not queue or waiter not in queue:
            return False
        queue.remove(waiter)
        if not queue:
            del self._waiters[waiter.path]
        return True

    def drain(self, path: str) -> list[Waiter]:
        """Remove and return every waiter for ``path`` in arrival order."""
        return list(self._waiters.pop(path, ()))

    def drain_all(self) -> list[Waiter]:
        waiters = [waiter for queue in self._waiters.values() for waiter in queue]
        self._waiters.clear()
        return waiters

    def size(self, path: str | None = None) -> int:
        """Get the number of pending waiters, for one path or overall."""
        if path is not None:
            return len(self._waiters.get(path, ()))
        return sum(len(queue) for queue in self._waiters.values())

    def _expire(self, waiter: Waiter, timeout: float) -> None:
        if waiter.done:
            return
        self.remove(waiter)
        log.info("Timeout reached after %gs waiting for %s", timeout, waiter.path)
        waiter.fail(WaitTimeoutError(f"Timeout waiting for file change ({timeout:g} seconds)"))
