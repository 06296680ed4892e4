import os
import zoneinfo

import tzlocal

from homekit_bridge import __version__

__all__ = [
    "CLIENT_ID_PREFIX",
    "CONNECT_TIMEOUT",
    "DEFAULT_PAYLOAD_TEMPLATE",
    "EVENT_LOG_CAPACITY",
    "HKB_DEBUG",
    "HKB_LOG_FORMAT",
    "HKB_LOG_HUMAN_OUTPUT",
    "HKB_LOG_JSON_FILE",
    "HKB_MQTT_HOST",
    "HKB_MQTT_PASS",
    "HKB_MQTT_PORT",
    "HKB_MQTT_USER",
    "HKB_PERF_THRESHOLD_MS",
    "HKB_PERF_TRACKING",
    "HKB_TOPIC_PREFIX",
    "HKB_VERSION",
    "LOCAL_TZ",
    "MQTT_CONFIG_KEY",
    "PERSISTENT_BASE_DIR",
    "PUBLISH_QOS",
    "PUBLISH_TIMEOUT",
    "RECONNECT_DELAY",
    "SUBSCRIPTIONS_KEY",
    "VALUE_PLACEHOLDER",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
HKB_VERSION: str = __version__
LOCAL_TZ = zoneinfo.ZoneInfo(str(tzlocal.get_localzone()))

# Broker defaults, used only until a configuration has been persisted
HKB_MQTT_HOST: str = os.environ.get("HKB_MQTT_HOST", "localhost")
_mqtt_port = os.environ.get("HKB_MQTT_PORT", "1883")
try:
    _mqtt_port_value: int = int(_mqtt_port) if _mqtt_port else 1883
except ValueError:
    _mqtt_port_value = 1883
HKB_MQTT_PORT: int = _mqtt_port_value
HKB_MQTT_USER: str | None = os.environ.get("HKB_MQTT_USER") or None
HKB_MQTT_PASS: str | None = os.environ.get("HKB_MQTT_PASS") or None
HKB_TOPIC_PREFIX: str = os.environ.get("HKB_TOPIC_PREFIX", "homekit")

PERSISTENT_BASE_DIR: str = os.environ.get("HKB_PERSISTENT_BASE_DIR", "~/.homekit-bridge")
SUBSCRIPTIONS_KEY: str = "homekit_subscriptions"
MQTT_CONFIG_KEY: str = "mqtt_config"

HKB_DEBUG: bool = os.environ.get("HKB_DEBUG", "0").casefold() in YES_ANSWER

# Logging
HKB_LOG_FORMAT: str = os.environ.get("HKB_LOG_FORMAT", "human").casefold()
HKB_LOG_JSON_FILE: str | None = os.environ.get("HKB_LOG_JSON_FILE") or None
HKB_LOG_HUMAN_OUTPUT: str = os.environ.get("HKB_LOG_HUMAN_OUTPUT", "stdout")

# Performance instrumentation
HKB_PERF_TRACKING: bool = os.environ.get("HKB_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("HKB_PERF_THRESHOLD_MS", "1000")
try:
    _perf_threshold_value: int = int(_perf_threshold)
except ValueError:
    _perf_threshold_value = 1000
HKB_PERF_THRESHOLD_MS: int = _perf_threshold_value

# Core behaviour
EVENT_LOG_CAPACITY: int = 1000
CONNECT_TIMEOUT: float = 10.0
PUBLISH_TIMEOUT: float = 5.0
RECONNECT_DELAY: float = 0.5
VALUE_PLACEHOLDER: str = "{{value}}"
DEFAULT_PAYLOAD_TEMPLATE: str = '{"value": "{{value}}"}'
# at-least-once
PUBLISH_QOS: int = 1
CLIENT_ID_PREFIX: str = "homekit-bridge-"
