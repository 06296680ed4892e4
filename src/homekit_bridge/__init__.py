"""HomeKit to MQTT bridge.

Matches device state-change events against user subscriptions and publishes
rendered payloads to an MQTT broker.
"""

__version__ = "0.3.0"
