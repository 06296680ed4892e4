"""Lifecycle of the single broker connection.

State moves through Disconnected -> Connecting -> Connected. Connects are
serialized: callers that arrive while a connect is in flight wait for it and
reuse the resulting handle instead of opening a second connection.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable

import aiomqtt

from homekit_bridge.const import CLIENT_ID_PREFIX, PUBLISH_QOS, RECONNECT_DELAY
from homekit_bridge.exceptions import ConnectFailure, PublishFailure
from homekit_bridge.instrumentation import timed_async
from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.structs import BrokerConfig, ConnectionState

logger = get_logger(__name__)


def new_client_id() -> str:
    """Fresh identifier per attempt so a stale session at the broker never collides."""
    return f"{CLIENT_ID_PREFIX}{uuid.uuid4().hex[:12]}"


class ConnectionManager:
    """Owns the aiomqtt client handle and the connection state."""

    lp: str = "mqtt:"

    def __init__(self, config_provider: Callable[[], BrokerConfig]) -> None:
        self._config_provider: Callable[[], BrokerConfig] = config_provider
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self.client: aiomqtt.Client | None = None
        self.client_id: str | None = None
        self._connect_lock: asyncio.Lock = asyncio.Lock()
        self._cleanup_tasks: set[asyncio.Task[None]] = set()
        # bumped by reset/disconnect; a connect that finishes under an older generation is stale
        self._generation: int = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self.client is not None

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("%s state %s -> %s", self.lp, self._state, state)
        self._state = state

    @timed_async("mqtt_connect")
    async def ensure_connected(self) -> aiomqtt.Client:
        """Return the live client, connecting first if needed.

        Raises:
            ConnectFailure: the broker refused the connection, the transport failed,
                or reset()/disconnect() ran while the connect was in flight

        """
        if self.is_connected:
            assert self.client is not None
            return self.client

        lp = f"{self.lp}connect:"
        async with self._connect_lock:
            # Another task may have connected while we waited on the lock
            if self.is_connected:
                assert self.client is not None
                return self.client

            generation = self._generation
            config = self._config_provider()
            self.client_id = client_id = new_client_id()
            self._set_state(ConnectionState.CONNECTING)
            logger.debug(
                "%s Connecting to MQTT broker...",
                lp,
                extra={"host": config.server, "port": config.port, "client_id": client_id},
            )
            client = aiomqtt.Client(
                hostname=config.server,
                port=config.port,
                username=config.username,
                password=config.password,
                identifier=client_id,
            )
            try:
                _ = await client.__aenter__()
            except (aiomqtt.MqttError, OSError) as e:
                # -> [Errno 111] Connection refused
                # [code:134] Bad user name or password
                logger.warning("%s Connection failed: %s", lp, e)
                self._set_state(ConnectionState.DISCONNECTED)
                raise ConnectFailure(config.server, config.port, str(e)) from e
            except asyncio.CancelledError:
                # Abandoned by a timeout; the half-open handle is closed in the background
                self._set_state(ConnectionState.DISCONNECTED)
                self._discard(client)
                raise

            if generation != self._generation:
                logger.warning("%s Connection was reset while connecting, discarding it", lp)
                self._set_state(ConnectionState.DISCONNECTED)
                self._discard(client)
                raise ConnectFailure(config.server, config.port, "connection reset while connecting")

            self.client = client
            self._set_state(ConnectionState.CONNECTED)
            logger.info("%s Connected to MQTT broker: %s port: %s", lp, config.server, config.port)
            return client

    @timed_async("mqtt_publish")
    async def publish(self, topic: str, payload: bytes) -> None:
        """Publish with QoS 1 and retain off. ``ensure_connected`` must have succeeded first.

        Raises:
            PublishFailure: not connected, or the broker/transport rejected the message

        """
        client = self.client
        if self._state != ConnectionState.CONNECTED or client is None:
            raise PublishFailure(topic, "not connected")
        try:
            await client.publish(topic, payload, qos=PUBLISH_QOS, retain=False)
        except aiomqtt.MqttError as e:
            logger.warning("%s publish: [%s] -> %s", self.lp, type(e).__name__, e)
            raise PublishFailure(topic, str(e)) from e

    async def disconnect(self) -> None:
        """Best-effort graceful close; always ends Disconnected with no handle."""
        lp = f"{self.lp}disconnect:"
        self._generation += 1
        client = self.client
        self.client = None
        try:
            if client is not None:
                logger.debug("%s Disconnecting from broker...", lp)
                await _close_client(client, lp)
        finally:
            self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> aiomqtt.Client:
        await self.disconnect()
        await asyncio.sleep(RECONNECT_DELAY)
        return await self.ensure_connected()

    def reset(self) -> None:
        """Drop the current handle without waiting on the broker.

        Used after a failed or timed-out operation so the next attempt starts clean.
        The dropped handle is closed in the background.
        """
        self._generation += 1
        client = self.client
        self.client = None
        self._set_state(ConnectionState.DISCONNECTED)
        if client is not None:
            self._discard(client)

    def _discard(self, client: aiomqtt.Client) -> None:
        task = asyncio.get_running_loop().create_task(_close_client(client, f"{self.lp}reset:"))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)


async def _close_client(client: aiomqtt.Client, lp: str) -> None:
    try:
        await client.__aexit__(None, None, None)
    except aiomqtt.MqttError as ce:
        logger.warning("%s MQTT disconnect failed: %s", lp, ce)
    except Exception as e:
        logger.warning("%s MQTT disconnect failed: [%s] %s", lp, type(e).__name__, e)
    else:
        logger.info("%s Disconnected from MQTT broker", lp)
