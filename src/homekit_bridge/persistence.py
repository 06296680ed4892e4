"""Opaque key/value blob stores for subscriptions and broker settings."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol

from homekit_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Get/set of serialized blobs keyed by name."""

    def get(self, key: str) -> bytes | None:
        """Return the blob stored under ``key`` or None."""
        ...

    def set(self, key: str, blob: bytes) -> None:
        """Replace the blob stored under ``key``."""
        ...


class MemoryStore:
    """In-process store; nothing survives a restart."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self.blobs: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    def set(self, key: str, blob: bytes) -> None:
        self.blobs[key] = blob


class JsonFileStore:
    """One ``<key>.json`` file per key under ``base_dir``.

    Writes go to a temp file in the same directory and are moved into place,
    so a crash mid-write never leaves a truncated blob behind.
    """

    lp: str = "store:"

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir: Path = Path(base_dir).expanduser().resolve()
        if not self.base_dir.exists():
            self.base_dir.mkdir(parents=True, exist_ok=True)
            logger.info("%s Created persistent directory: %s", self.lp, self.base_dir.as_posix())

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{key}.json"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError:
            logger.exception("%s Unable to read %s", self.lp, path.as_posix())
            return None

    def set(self, key: str, blob: bytes) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                _ = f.write(blob)
            os.replace(tmp_name, path)
        except OSError:
            logger.exception("%s Unable to write %s", self.lp, path.as_posix())
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("%s Saved %s (%d bytes)", self.lp, key, len(blob))
