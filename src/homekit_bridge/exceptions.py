"""Exception hierarchy for the publish pipeline.

Every error the pipeline can hit is a ``BridgeError``; the pipeline turns each
one into an outcome entry in the event log.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge errors."""


class EncodingFailure(BridgeError):
    """Rendered payload could not be represented as UTF-8 bytes.

    Attributes:
        reason: Underlying codec error message

    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Payload encoding failed: {reason}")


class InvalidPayloadError(BridgeError):
    """Rendered payload is not valid JSON.

    Attributes:
        text: The offending payload text
        reason: JSON parser error message

    """

    def __init__(self, text: str, reason: str) -> None:
        self.text: str = text
        self.reason: str = reason
        super().__init__(f"Invalid JSON payload ({reason}): {text}")


class ConnectFailure(BridgeError):
    """Broker handshake or transport failed while connecting.

    Attributes:
        host: Broker host
        port: Broker port
        reason: Error reported by the MQTT client

    """

    def __init__(self, host: str, port: int, reason: str) -> None:
        self.host: str = host
        self.port: int = port
        self.reason: str = reason
        super().__init__(f"Connect to {host}:{port} failed: {reason}")


class PublishTimeout(BridgeError):
    """Connect or publish did not finish within its bound.

    Attributes:
        operation: "connect" or "publish"
        timeout_seconds: Bound that was exceeded

    """

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation: str = operation
        self.timeout_seconds: float = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds}s")


class PublishFailure(BridgeError):
    """Broker rejected the message or the transport failed during publish.

    Attributes:
        topic: Destination topic
        reason: Error reported by the MQTT client

    """

    def __init__(self, topic: str, reason: str) -> None:
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Publish to {topic} failed: {reason}")
