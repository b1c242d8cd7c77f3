"""Best-effort fan-out of change facts to long-lived subscribers."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tasksync.logging import get_logger
from tasksync.models import ChangeFact

log = get_logger("broadcast")

ChangeCallback = Callable[[ChangeFact], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Subscription:
    """Handle returned by :meth:`Broadcaster.subscribe`."""

    name: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


class Broadcaster:
    """Deliver every change fact to every current subscriber independently."""

    def __init__(self) -> None:
        self._subscribers: dict[Subscription, ChangeCallback] = {}

    @property
    def count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: ChangeCallback, *, name: str | None = None) -> Subscription:
        subscription = Subscription(name=name)
        self._subscribers[subscription] = callback
        log.debug("Subscriber %s added (%d active)", subscription.name or subscription.id, self.count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        removed = self._subscribers.pop(subscription, None) is not None
        if removed:
            log.debug("Subscriber %s removed (%d active)", subscription.name or subscription.id, self.count)
        return removed

    async def publish(self, fact: ChangeFact) -> int:
        """Deliver ``fact`` to a snapshot of the subscribers.

        Returns:
            Number of subscribers that accepted the delivery.
        """
        subscribers = list(self._subscribers.items())
        if not subscribers:
            return 0

        results = await asyncio.gather(
            *(self._deliver(subscription, callback, fact) for subscription, callback in subscribers)
        )
        return sum(results)

    async def _deliver(self, subscription: Subscription, callback: ChangeCallback, fact: ChangeFact) -> bool:
        try:
            await callback(fact)
        except Exception:
            log.warning(
                "Failed to deliver change of %s to subscriber %s",
                fact.path,
                subscription.name or subscription.id,
                exc_info=True,
            )
            return False
        return True
