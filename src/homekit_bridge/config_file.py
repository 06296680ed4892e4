"""Optional YAML file for provisioning broker settings and subscriptions.

Example::

    broker:
      server: mqtt.local
      port: 1883
      username: bridge
      prefix: homekit
    subscriptions:
      - accessory: Sensor1
        characteristic: Temperature
        topic: temp
        payload: '{"state": "{{value}}"}'
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from homekit_bridge.const import DEFAULT_PAYLOAD_TEMPLATE
from homekit_bridge.controller import BridgeController
from homekit_bridge.logging_abstraction import get_logger
from homekit_bridge.structs import BrokerConfig

logger = get_logger(__name__)


def _parse_subscription(index: int, data: dict[str, Any]) -> dict[str, str] | None:
    """Parse one subscription entry. Returns add() kwargs or None."""
    accessory = data.get("accessory")
    characteristic = data.get("characteristic")
    if not accessory or not characteristic:
        logger.warning("Skipping subscription #%d: 'accessory' and 'characteristic' are required", index)
        return None
    return {
        "accessory_name": str(accessory),
        "characteristic_name": str(characteristic),
        "topic": str(data.get("topic") or ""),
        "payload": str(data.get("payload") or DEFAULT_PAYLOAD_TEMPLATE),
    }


def parse_config_file(config_file: Path) -> tuple[BrokerConfig | None, list[dict[str, str]]]:
    """Parse a YAML provisioning file.

    Args:
        config_file: Path to the YAML file

    Returns:
        Tuple of (broker config or None, list of subscription kwargs)

    Raises:
        yaml.YAMLError: The file is not valid YAML
        pydantic.ValidationError: The broker section has invalid values

    """
    logger.debug("Parsing config file: %s", config_file)
    with config_file.open(encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        logger.warning("Config file %s does not contain a mapping, ignoring", config_file)
        return None, []

    broker: BrokerConfig | None = None
    broker_data = config_data.get("broker")
    if isinstance(broker_data, dict):
        broker = BrokerConfig.model_validate(broker_data)

    subscriptions: list[dict[str, str]] = []
    for index, sub_data in enumerate(config_data.get("subscriptions") or []):
        if not isinstance(sub_data, dict):
            logger.warning("Skipping subscription #%d: expected a mapping", index)
            continue
        parsed = _parse_subscription(index, sub_data)
        if parsed is not None:
            subscriptions.append(parsed)

    logger.info(
        "Parsed config: broker=%s, %d subscriptions",
        "yes" if broker else "no",
        len(subscriptions),
    )
    return broker, subscriptions


def apply_config_file(controller: BridgeController, config_file: Path) -> int:
    """Load ``config_file`` into the controller. Returns the number of subscriptions added.

    Subscriptions already present with the same accessory, characteristic and
    topic are left alone, so applying the same file twice is harmless.
    """
    try:
        broker, subscriptions = parse_config_file(config_file)
    except (OSError, yaml.YAMLError, ValidationError):
        logger.exception("Failed to load config file: %s", config_file)
        raise

    if broker is not None:
        controller.save_broker_config(broker)

    existing = {(s.accessory_name, s.characteristic_name, s.topic) for s in controller.subscriptions}
    added = 0
    for kwargs in subscriptions:
        key = (kwargs["accessory_name"], kwargs["characteristic_name"], kwargs["topic"])
        if key in existing:
            continue
        _ = controller.add_subscription(**kwargs)
        existing.add(key)
        added += 1
    return added
