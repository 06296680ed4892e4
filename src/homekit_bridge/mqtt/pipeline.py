"""Per-match publish pipeline.

render -> validate -> connect (bounded) -> publish (bounded) -> record outcome.
Every outcome, good or bad, is handed back to the controller as an Event; no
error escapes a pipeline run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from homekit_bridge.const import CONNECT_TIMEOUT, PUBLISH_TIMEOUT
from homekit_bridge.correlation import correlation_context
from homekit_bridge.exceptions import (
    BridgeError,
    ConnectFailure,
    EncodingFailure,
    InvalidPayloadError,
    PublishFailure,
    PublishTimeout,
)
from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.mqtt.connection import ConnectionManager
from homekit_bridge.payload import encode_payload, render, validate
from homekit_bridge.structs import BrokerConfig, Event, EventKind, Subscription

logger = get_logger(__name__)

Recorder = Callable[[Event], None]


class PublishPipeline:
    lp: str = "pipeline:"

    def __init__(
        self,
        connection: ConnectionManager,
        config_provider: Callable[[], BrokerConfig],
        record: Recorder,
        connect_timeout: float = CONNECT_TIMEOUT,
        publish_timeout: float = PUBLISH_TIMEOUT,
    ) -> None:
        self.connection: ConnectionManager = connection
        self._config_provider: Callable[[], BrokerConfig] = config_provider
        self._record: Recorder = record
        self.connect_timeout: float = connect_timeout
        self.publish_timeout: float = publish_timeout

    async def run(self, subscription: Subscription, value: str) -> Event:
        """Execute one publish attempt and record its outcome. Returns the recorded event."""
        topic = self._config_provider().topic_for(subscription.topic)
        with correlation_context():
            try:
                outcome = await self._attempt(subscription, value, topic)
            except asyncio.CancelledError:
                logger.debug("%s publish to %s cancelled", self.lp, topic)
                raise
            except BridgeError as e:
                outcome = self._failure_event(e, topic, subscription)
            except Exception as e:
                logger.exception("%s Unexpected error publishing to %s", self.lp, topic)
                self.connection.reset()
                outcome = self._outcome(EventKind.PUBLISH_FAILURE, topic, subscription, f"{type(e).__name__}: {e}")
            self._record(outcome)
            return outcome

    async def _attempt(self, subscription: Subscription, value: str, topic: str) -> Event:
        lp = f"{self.lp}run:"
        text = render(subscription.payload, value)
        body = encode_payload(text)
        validate(text).raise_for_error()

        try:
            _ = await asyncio.wait_for(self.connection.ensure_connected(), self.connect_timeout)
        except TimeoutError as e:
            raise PublishTimeout("connect", self.connect_timeout) from e

        try:
            await asyncio.wait_for(self.connection.publish(topic, body), self.publish_timeout)
        except TimeoutError as e:
            raise PublishTimeout("publish", self.publish_timeout) from e

        logger.info("%s Published to %s", lp, topic, extra={"bytes": len(body), "subscription": str(subscription.id)})
        return self._outcome(EventKind.PUBLISH_SUCCESS, topic, subscription, text)

    def _failure_event(self, error: BridgeError, topic: str, subscription: Subscription) -> Event:
        match error:
            case EncodingFailure():
                kind = EventKind.ENCODING_FAILURE
                detail = error.reason
            case InvalidPayloadError():
                kind = EventKind.INVALID_PAYLOAD
                detail = f"{error.reason}: {error.text}"
            case PublishTimeout():
                kind = EventKind.TIMEOUT
                detail = str(error)
            case ConnectFailure():
                kind = EventKind.CONNECT_FAILURE
                detail = error.reason
            case PublishFailure():
                kind = EventKind.PUBLISH_FAILURE
                detail = error.reason
            case _:
                kind = EventKind.PUBLISH_FAILURE
                detail = str(error)

        if kind in (EventKind.TIMEOUT, EventKind.CONNECT_FAILURE, EventKind.PUBLISH_FAILURE):
            # Next attempt starts from a clean connection
            self.connection.reset()
            logger.warning("%s %s for %s: %s", self.lp, kind.value, topic, detail)
        else:
            logger.warning("%s %s for %s, not sending: %s", self.lp, kind.value, topic, detail)
        return self._outcome(kind, topic, subscription, detail)

    @staticmethod
    def _outcome(kind: EventKind, topic: str, subscription: Subscription, detail: str) -> Event:
        return Event(
            kind=kind,
            accessory=subscription.accessory_name,
            characteristic=subscription.characteristic_name,
            topic=topic,
            detail=detail,
        )
