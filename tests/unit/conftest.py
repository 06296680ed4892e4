"""
Shared fixtures for unit tests.

No test talks to a real broker: aiomqtt.Client is patched with MagicMocks whose
async context manager and publish methods are AsyncMocks.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from homekit_bridge.persistence import MemoryStore
from homekit_bridge.structs import BrokerConfig, Event, EventKind


def make_mqtt_client() -> MagicMock:
    """A stand-in for a connected aiomqtt.Client."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.publish = AsyncMock()
    return client


async def hang_forever(*_args, **_kwargs):
    """side_effect for a broker call that never completes."""
    await asyncio.sleep(3600)


@pytest.fixture
def mqtt_client_cls():
    """
    Patch aiomqtt.Client.

    Every construction returns a fresh mock client; the constructed clients are
    collected on ``mqtt_client_cls.instances``.
    """
    with patch("homekit_bridge.mqtt.connection.aiomqtt.Client") as client_cls:
        instances: list[MagicMock] = []

        def _factory(*_args, **_kwargs):
            client = make_mqtt_client()
            instances.append(client)
            return client

        client_cls.side_effect = _factory
        client_cls.instances = instances
        yield client_cls


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def broker_config():
    return BrokerConfig(server="broker.test", port=1883, prefix="homekit")


@pytest.fixture
def characteristic_event():
    """Factory for characteristic-updated events."""

    def _make(accessory="Sensor1", characteristic="Temperature", value="21.5", **kwargs):
        return Event(
            kind=EventKind.CHARACTERISTIC_UPDATED,
            accessory=accessory,
            characteristic=characteristic,
            value=value,
            **kwargs,
        )

    return _make


@pytest.fixture
def hanging():
    """side_effect coroutine function that never returns."""
    return hang_forever
