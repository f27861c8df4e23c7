"""
Key-value store interface and in-memory backend.

All schedule state (cache entries, subscriptions, run metadata) lives in a
flat key space with four primitives: get, set, delete and keys by prefix. The
versioned pair ``get_versioned`` / ``set_if_version`` adds optimistic
concurrency for read-modify-write cycles.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

# Version reported for a key that does not exist.
MISSING_VERSION = 0


def decode_value(value: Any) -> Any:
    """
    Return the structured form of a stored value.

    Older writers stored some values pre-serialised as JSON text. Strings that
    parse as a JSON object or array are decoded, anything else is returned as is.
    """
    if isinstance(value, (str, bytes)):
        text = value.decode("utf-8") if isinstance(value, bytes) else value
        stripped = text.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except ValueError:
                return text
        return text
    return value


class KeyValueStore(ABC):
    """Async key-value store consumed by the cache and subscription layers."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for ``key`` or None."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` unconditionally."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if it existed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with ``prefix``, sorted."""

    @abstractmethod
    async def get_versioned(self, key: str) -> Tuple[Optional[Any], int]:
        """Return ``(value, version)``; a missing key has version ``MISSING_VERSION``."""

    @abstractmethod
    async def set_if_version(self, key: str, value: Any, expected_version: int) -> bool:
        """
        Write ``value`` only if the stored version still equals ``expected_version``.

        ``MISSING_VERSION`` means the key must not exist yet. Returns False when
        another writer got there first.
        """

    @abstractmethod
    async def delete_if_version(self, key: str, expected_version: int) -> bool:
        """Delete ``key`` only if its stored version still equals ``expected_version``."""

    async def connect(self) -> None:
        """Open backend connections."""

    async def disconnect(self) -> None:
        """Close backend connections."""

    async def ping(self) -> bool:
        return True


class MemoryKeyValueStore(KeyValueStore):
    """
    Process-local store for tests and single-process deployments.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Tuple[Any, int]] = {}
        self._lock = asyncio.Lock()
        for key, value in (initial or {}).items():
            self._data[key] = (value, 1)

    async def get(self, key: str) -> Optional[Any]:
        value, _ = await self.get_versioned(key)
        return value

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            _, version = self._data.get(key, (None, MISSING_VERSION))
            self._data[key] = (value, version + 1)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    async def get_versioned(self, key: str) -> Tuple[Optional[Any], int]:
        if key not in self._data:
            return None, MISSING_VERSION
        value, version = self._data[key]
        return decode_value(value), version

    async def set_if_version(self, key: str, value: Any, expected_version: int) -> bool:
        async with self._lock:
            _, version = self._data.get(key, (None, MISSING_VERSION))
            if version != expected_version:
                logger.debug("Version mismatch", key=key, expected=expected_version, actual=version)
                return False
            self._data[key] = (value, version + 1)
            return True

    async def delete_if_version(self, key: str, expected_version: int) -> bool:
        async with self._lock:
            if key not in self._data:
                return False
            _, version = self._data[key]
            if version != expected_version:
                logger.debug("Version mismatch on delete", key=key, expected=expected_version, actual=version)
                return False
            del self._data[key]
            return True

    def __len__(self) -> int:
        return len(self._data)
