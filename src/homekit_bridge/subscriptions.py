"""In-memory subscription store, saved to persistence after every mutation."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterator
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from homekit_bridge.const import DEFAULT_PAYLOAD_TEMPLATE, SUBSCRIPTIONS_KEY
from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.persistence import KeyValueStore
from homekit_bridge.structs import Event, EventKind, Subscription

logger = get_logger(__name__)

_subscription_list = TypeAdapter(list[Subscription])


class SubscriptionStore:
    """Ordered collection of subscriptions keyed by their unique id."""

    lp: str = "subscriptions:"

    def __init__(self, store: KeyValueStore, key: str = SUBSCRIPTIONS_KEY) -> None:
        self._store: KeyValueStore = store
        self._key: str = key
        self._subscriptions: dict[uuid.UUID, Subscription] = {}

    def load(self) -> None:
        """Replace the in-memory list with the persisted one.

        A missing or unreadable blob leaves the store empty. Entries with an
        id that was already seen are dropped.
        """
        lp = f"{self.lp}load:"
        self._subscriptions = {}
        blob = self._store.get(self._key)
        if blob is None:
            logger.debug("%s No persisted subscriptions", lp)
            return
        try:
            loaded = _subscription_list.validate_json(blob)
        except ValidationError as e:
            logger.warning("%s Ignoring unreadable subscriptions blob: %s", lp, e)
            return
        for sub in loaded:
            if sub.id in self._subscriptions:
                logger.warning("%s Duplicate subscription id %s, keeping the first", lp, sub.id)
                continue
            self._subscriptions[sub.id] = sub
        logger.info("%s Loaded %d subscriptions", lp, len(self._subscriptions))

    def save(self) -> None:
        data = [sub.model_dump(mode="json") for sub in self._subscriptions.values()]
        self._store.set(self._key, json.dumps(data).encode())

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions.values()))

    def __contains__(self, sub_id: object) -> bool:
        return sub_id in self._subscriptions

    def get(self, sub_id: uuid.UUID) -> Subscription | None:
        return self._subscriptions.get(sub_id)

    def add(
        self,
        accessory_name: str,
        characteristic_name: str,
        topic: str = "",
        payload: str = DEFAULT_PAYLOAD_TEMPLATE,
    ) -> Subscription:
        sub = Subscription(
            accessory_name=accessory_name,
            characteristic_name=characteristic_name,
            topic=topic,
            payload=payload,
        )
        while sub.id in self._subscriptions:
            sub.id = uuid.uuid4()
        self._subscriptions[sub.id] = sub
        self.save()
        logger.info(
            "%s Added subscription",
            self.lp,
            extra={"id": str(sub.id), "accessory": accessory_name, "characteristic": characteristic_name},
        )
        return sub

    def add_from_event(self, event: Event) -> Subscription:
        """Promote a logged characteristic update into a new subscription."""
        if event.kind != EventKind.CHARACTERISTIC_UPDATED or event.accessory is None or event.characteristic is None:
            msg = f"cannot subscribe to a {event.kind.value} event"
            raise ValueError(msg)
        return self.add(event.accessory, event.characteristic)

    def update(self, sub_id: uuid.UUID, topic: str | None = None, payload: str | None = None) -> Subscription:
        sub = self._subscriptions.get(sub_id)
        if sub is None:
            raise KeyError(sub_id)
        if topic is not None:
            sub.topic = topic
        if payload is not None:
            sub.payload = payload
        self.save()
        logger.info("%s Updated subscription", self.lp, extra={"id": str(sub_id), "topic": sub.topic})
        return sub

    def remove(self, sub_id: uuid.UUID) -> bool:
        if self._subscriptions.pop(sub_id, None) is None:
            return False
        self.save()
        logger.info("%s Removed subscription", self.lp, extra={"id": str(sub_id)})
        return True

    def record_match(self, sub_id: uuid.UUID, timestamp: datetime) -> Subscription:
        sub = self._subscriptions[sub_id]
        sub.last_match = timestamp
        sub.match_count += 1
        self.save()
        return sub
