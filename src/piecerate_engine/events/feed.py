"""Change feed for bundle payment holds.

The feed provides:
- Subscriptions that return an unsubscribe callable
- Sync and async callbacks
- Error isolation (a failing subscriber does not affect others)
- Per-hold delivery in commit order
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from piecerate_engine.events.types import HoldChanged

logger = logging.getLogger(__name__)

HoldCallback = Callable[[HoldChanged], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


@dataclass
class Subscription:
    """Registration of a feed subscriber."""

    callback: HoldCallback
    active: bool = True


class HoldChangeFeed:
    """Publishes committed hold changes to subscribers.

    The engine publishes while still holding the per-hold lock, so
    events for one hold reach subscribers in the order their transitions
    committed. There is no ordering across different holds.

    Usage:
        feed = HoldChangeFeed()
        unsubscribe = feed.subscribe(on_change)
        ...
        unsubscribe()  # no further deliveries
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, callback: HoldCallback) -> Unsubscribe:
        """Register a callback; returns a function that cancels it."""
        subscription = Subscription(callback=callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions = [s for s in self._subscriptions if s is not subscription]

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: HoldChanged) -> list[Exception]:
        """Deliver an event to every active subscriber.

        Returns list of any exceptions raised by subscribers.
        """
        errors: list[Exception] = []
        for subscription in list(self._subscriptions):
            # Cancelled while an earlier subscriber was running
            if not subscription.active:
                continue
            try:
                result: Any = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    "Subscriber %s failed for hold %s (%s)",
                    subscription.callback,
                    event.hold_id,
                    event.kind.value,
                )
                errors.append(e)
        return errors

    async def publish_all(self, events: list[HoldChanged]) -> list[Exception]:
        """Deliver events in the given order."""
        errors: list[Exception] = []
        for event in events:
            errors.extend(await self.publish(event))
        return errors
