"""Core data structures for the HomeKit bridge."""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from homekit_bridge.const import (
    DEFAULT_PAYLOAD_TEMPLATE,
    HKB_MQTT_HOST,
    HKB_MQTT_PASS,
    HKB_MQTT_PORT,
    HKB_MQTT_USER,
    HKB_TOPIC_PREFIX,
    LOCAL_TZ,
    PERSISTENT_BASE_DIR,
)


class EventKind(StrEnum):
    """Kinds of entries that can appear in the event log."""

    # Emitted by the device event source
    CHARACTERISTIC_UPDATED = "characteristic-updated"
    REACHABILITY_CHANGED = "reachability-changed"
    ACCESSORY_ADDED = "accessory-added"
    ACCESSORY_REMOVED = "accessory-removed"
    HOME_UPDATED = "home-updated"
    ROOM_UPDATED = "room-updated"
    SERVICE_UPDATED = "service-updated"
    ACTION_EXECUTED = "action-executed"
    # Emitted by the publish pipeline
    PUBLISH_SUCCESS = "publish-success"
    ENCODING_FAILURE = "encoding-failure"
    INVALID_PAYLOAD = "invalid-payload"
    CONNECT_FAILURE = "connect-failure"
    TIMEOUT = "timeout"
    PUBLISH_FAILURE = "publish-failure"
    # Controller lifecycle notes
    INFO = "info"


# Kinds an external event source may deliver; the rest are produced by the bridge itself
SOURCE_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.CHARACTERISTIC_UPDATED,
        EventKind.REACHABILITY_CHANGED,
        EventKind.ACCESSORY_ADDED,
        EventKind.ACCESSORY_REMOVED,
        EventKind.HOME_UPDATED,
        EventKind.ROOM_UPDATED,
        EventKind.SERVICE_UPDATED,
        EventKind.ACTION_EXECUTED,
    }
)


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Event(BaseModel):
    """One observed state change, or one outcome recorded by the bridge itself.

    Events are immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    timestamp: datetime = Field(default_factory=_utcnow)
    accessory: str | None = None
    room: str | None = None
    service: str | None = None
    characteristic: str | None = None
    value: str | None = None
    topic: str | None = None
    detail: str | None = None

    @property
    def is_characteristic_update(self) -> bool:
        """True when this event carries everything the matcher needs."""
        return (
            self.kind == EventKind.CHARACTERISTIC_UPDATED
            and self.accessory is not None
            and self.characteristic is not None
            and self.value is not None
        )

    @property
    def display_text(self) -> str:
        ts = self.timestamp.astimezone(LOCAL_TZ).isoformat(timespec="seconds")
        room = f" [Room: {self.room}]" if self.room else ""
        match self.kind:
            case EventKind.CHARACTERISTIC_UPDATED:
                text = f"Characteristic updated: {self.characteristic} = {self.value} on {self.accessory}{room}"
            case EventKind.REACHABILITY_CHANGED:
                text = f"Accessory {self.accessory}{room} is now {self.value}"
            case EventKind.ACCESSORY_ADDED:
                text = f"Accessory added: {self.accessory}{room}"
            case EventKind.ACCESSORY_REMOVED:
                text = f"Accessory removed: {self.accessory}{room}"
            case EventKind.SERVICE_UPDATED:
                text = f"Service updated: {self.service} on {self.accessory}{room}"
            case EventKind.PUBLISH_SUCCESS:
                text = f"MQTT published to {self.topic}: {self.detail}"
            case EventKind.INVALID_PAYLOAD:
                text = f"MQTT payload is not valid JSON for {self.topic}: {self.detail}"
            case EventKind.ENCODING_FAILURE | EventKind.CONNECT_FAILURE | EventKind.TIMEOUT | EventKind.PUBLISH_FAILURE:
                text = f"MQTT {self.kind.value} for {self.topic}: {self.detail}"
            case _:
                subject = self.detail or self.accessory or self.room or self.service or ""
                text = f"{self.kind.value}: {subject}{room}"
        return f"[{ts}] {text}"


class Subscription(BaseModel):
    """User rule binding an accessory/characteristic pair to a topic and payload template."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    accessory_name: str
    characteristic_name: str
    topic: str = ""
    payload: str = DEFAULT_PAYLOAD_TEMPLATE
    last_match: datetime | None = None
    match_count: int = Field(default=0, ge=0)

    def matches(self, event: Event) -> bool:
        """Exact, case-sensitive comparison of the accessory/characteristic pair."""
        return self.accessory_name == event.accessory and self.characteristic_name == event.characteristic


class BrokerConfig(BaseModel):
    """MQTT broker settings. Read on every connect so edits apply to the next connection."""

    server: str = "localhost"
    port: int = Field(default=1883, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    prefix: str = "homekit"

    @field_validator("username", "password", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value:
            return None
        return value

    def topic_for(self, suffix: str) -> str:
        return f"{self.prefix}/{suffix}"


class BridgeEnv(BaseModel):
    """Environment-derived settings.

    The module level constants in ``const`` are evaluated at import time;
    ``reload`` re-reads them after a .env file has been loaded.
    """

    mqtt_host: str = HKB_MQTT_HOST
    mqtt_port: int = HKB_MQTT_PORT
    mqtt_user: str | None = HKB_MQTT_USER
    mqtt_pass: str | None = HKB_MQTT_PASS
    topic_prefix: str = HKB_TOPIC_PREFIX
    persistent_base_dir: str = PERSISTENT_BASE_DIR

    def reload(self) -> None:
        self.mqtt_host = os.environ.get("HKB_MQTT_HOST", "localhost")
        try:
            self.mqtt_port = int(os.environ.get("HKB_MQTT_PORT", "1883"))
        except ValueError:
            self.mqtt_port = 1883
        self.mqtt_user = os.environ.get("HKB_MQTT_USER") or None
        self.mqtt_pass = os.environ.get("HKB_MQTT_PASS") or None
        self.topic_prefix = os.environ.get("HKB_TOPIC_PREFIX", "homekit")
        self.persistent_base_dir = os.environ.get("HKB_PERSISTENT_BASE_DIR", "~/.homekit-bridge")

    def default_broker_config(self) -> BrokerConfig:
        return BrokerConfig(
            server=self.mqtt_host,
            port=self.mqtt_port,
            username=self.mqtt_user,
            password=self.mqtt_pass,
            prefix=self.topic_prefix,
        )
