"""Subscription matching for newly logged events."""

from __future__ import annotations

from collections.abc import Callable

from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.structs import Event, Subscription
from homekit_bridge.subscriptions import SubscriptionStore

logger = get_logger(__name__)

# Called with (subscription, value) for every match that has a topic; must not block
PublishTrigger = Callable[[Subscription, str], object]


class SubscriptionMatcher:
    """Matches characteristic updates by exact (accessory, characteristic) pair."""

    lp: str = "matcher:"

    def __init__(self, store: SubscriptionStore, trigger: PublishTrigger) -> None:
        self._store: SubscriptionStore = store
        self._trigger: PublishTrigger = trigger

    def on_event(self, event: Event) -> list[Subscription]:
        """Record the match on every subscription for this event's pair and trigger publishes.

        Returns the matched subscriptions. Events other than complete
        characteristic updates are ignored.
        """
        if not event.is_characteristic_update:
            return []
        assert event.value is not None

        matched: list[Subscription] = []
        for sub in self._store:
            if not sub.matches(event):
                continue
            sub = self._store.record_match(sub.id, event.timestamp)
            matched.append(sub)
            logger.debug(
                "%s %s/%s matched (count=%d)",
                self.lp,
                sub.accessory_name,
                sub.characteristic_name,
                sub.match_count,
            )
            if sub.topic:
                _ = self._trigger(sub, event.value)
        return matched
