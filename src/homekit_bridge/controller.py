"""Bridge controller: sole owner of the event log, subscriptions and broker connection.

All state lives on the controller's event loop. Producers on that loop call
``ingest``; producers on any other thread call ``submit``, which hands the
event over with ``call_soon_threadsafe`` and returns immediately.
"""

from __future__ import annotations

import asyncio
import uuid

from pydantic import ValidationError

from homekit_bridge.const import CONNECT_TIMEOUT, MQTT_CONFIG_KEY
from homekit_bridge.event_log import EventLog
from homekit_bridge.exceptions import BridgeError
from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.matcher import SubscriptionMatcher
from homekit_bridge.mqtt.connection import ConnectionManager
from homekit_bridge.mqtt.pipeline import PublishPipeline
from homekit_bridge.persistence import KeyValueStore
from homekit_bridge.structs import BridgeEnv, BrokerConfig, ConnectionState, Event, EventKind, Subscription
from homekit_bridge.subscriptions import SubscriptionStore

logger = get_logger(__name__)


class BridgeController:
    lp: str = "controller:"

    def __init__(
        self,
        store: KeyValueStore,
        env: BridgeEnv | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._store: KeyValueStore = store
        self.env: BridgeEnv = env or BridgeEnv()
        self.loop: asyncio.AbstractEventLoop | None = loop
        self.broker_config: BrokerConfig = self._load_broker_config()

        self.event_log: EventLog = EventLog()
        self.subscriptions: SubscriptionStore = SubscriptionStore(store)
        self.subscriptions.load()
        self.connection: ConnectionManager = ConnectionManager(lambda: self.broker_config)
        self.pipeline: PublishPipeline = PublishPipeline(
            self.connection,
            lambda: self.broker_config,
            self.ingest,
        )
        self.matcher: SubscriptionMatcher = SubscriptionMatcher(self.subscriptions, self.spawn_publish)
        self.event_log.add_listener(self.matcher.on_event)
        self.publish_tasks: set[asyncio.Task[Event]] = set()

    # -- configuration -----------------------------------------------------

    def _load_broker_config(self) -> BrokerConfig:
        lp = f"{self.lp}config:"
        blob = self._store.get(MQTT_CONFIG_KEY)
        if blob is not None:
            try:
                return BrokerConfig.model_validate_json(blob)
            except ValidationError as e:
                logger.warning("%s Ignoring unreadable broker config, using environment defaults: %s", lp, e)
        return self.env.default_broker_config()

    def save_broker_config(self, config: BrokerConfig) -> None:
        """Persist new broker settings. They apply from the next connect onwards."""
        self.broker_config = config
        self._store.set(MQTT_CONFIG_KEY, config.model_dump_json().encode())
        logger.info(
            "%s Broker configuration saved",
            self.lp,
            extra={"server": config.server, "port": config.port, "prefix": config.prefix},
        )
        self.note("MQTT configuration saved")

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    # -- ingestion ----------------------------------------------------------

    def ingest(self, event: Event) -> None:
        """Append to the log, which matches the event synchronously. Loop thread only."""
        self.event_log.append(event)

    def submit(self, event: Event) -> None:
        """Thread-safe, non-blocking handoff of an event onto the controller's loop."""
        if self.loop is None:
            msg = "controller has not been started"
            raise RuntimeError(msg)
        _ = self.loop.call_soon_threadsafe(self.ingest, event)

    def note(self, message: str) -> None:
        self.ingest(Event(kind=EventKind.INFO, detail=message))

    def spawn_publish(self, subscription: Subscription, value: str) -> asyncio.Task[Event]:
        """Fire-and-forget publish of a snapshot of ``subscription``."""
        task = asyncio.get_running_loop().create_task(
            self.pipeline.run(subscription.model_copy(), value),
            name=f"publish:{subscription.id}",
        )
        self.publish_tasks.add(task)
        task.add_done_callback(self.publish_tasks.discard)
        return task

    # -- subscriptions -----------------------------------------------------

    def add_subscription(self, accessory_name: str, characteristic_name: str, **kwargs: str) -> Subscription:
        return self.subscriptions.add(accessory_name, characteristic_name, **kwargs)

    def subscribe_to_event(self, event: Event) -> Subscription:
        return self.subscriptions.add_from_event(event)

    def update_subscription(
        self, sub_id: uuid.UUID, topic: str | None = None, payload: str | None = None
    ) -> Subscription:
        return self.subscriptions.update(sub_id, topic=topic, payload=payload)

    def remove_subscription(self, sub_id: uuid.UUID) -> bool:
        return self.subscriptions.remove(sub_id)

    # -- connection ----------------------------------------------------------

    async def disconnect(self) -> None:
        await self.connection.disconnect()
        self.note("MQTT disconnected")

    async def reconnect(self) -> bool:
        """Drop and re-open the broker connection. Failures are logged, not raised."""
        try:
            _ = await asyncio.wait_for(self.connection.reconnect(), CONNECT_TIMEOUT)
        except TimeoutError:
            self.connection.reset()
            self.ingest(Event(kind=EventKind.TIMEOUT, detail=f"reconnect timed out after {CONNECT_TIMEOUT}s"))
            return False
        except BridgeError as e:
            self.connection.reset()
            self.ingest(Event(kind=EventKind.CONNECT_FAILURE, detail=str(e)))
            return False
        self.note("MQTT reconnected")
        return True

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self.loop = asyncio.get_running_loop()
        logger.info(
            "%s Bridge initialized",
            self.lp,
            extra={"subscriptions": len(self.subscriptions), "broker": self.broker_config.server},
        )
        self.note("Bridge initialized")

    async def drain(self) -> None:
        """Wait for every in-flight publish to record its outcome."""
        while self.publish_tasks:
            _ = await asyncio.gather(*list(self.publish_tasks), return_exceptions=True)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        pending = [t for t in self.publish_tasks if not t.done()]
        if pending:
            logger.debug("%s Cancelling %d in-flight publishes", lp, len(pending))
            for task in pending:
                _ = task.cancel()
            _ = await asyncio.gather(*pending, return_exceptions=True)
        await self.connection.disconnect()
        logger.info("%s Bridge stopped", lp)
