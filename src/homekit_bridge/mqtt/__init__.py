"""MQTT side of the bridge.

- connection.py: ConnectionManager owning the single broker connection
- pipeline.py: PublishPipeline running one bounded publish attempt per match
"""

from .connection import ConnectionManager, new_client_id
from .pipeline import PublishPipeline

__all__ = [
    "ConnectionManager",
    "PublishPipeline",
    "new_client_id",
]
