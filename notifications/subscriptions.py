"""
Device subscriptions grouped by class.

Two key families live in the shared key-value store:

- ``class:<name>`` holds the list of device tokens subscribed to a class.
- ``device:<token>`` holds the registration record of one device.
"""

from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from notifications.models import DeviceRegistration
from storage.kv import KeyValueStore
from utilities.logger import short_token

logger = structlog.get_logger(__name__)

CLASS_PREFIX = "class:"
DEVICE_PREFIX = "device:"

# Attempts for a conditional update of one class list before giving up.
MAX_LIST_UPDATE_ATTEMPTS = 5


class SubscriptionConflictError(RuntimeError):
    """A class list kept changing underneath a conditional update."""


class SubscriptionStore:
    """Registration bookkeeping on top of the key-value store."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.logger = logger.bind(component="subscriptions")

    async def _update_class_list(self, class_name: str, mutate: Callable[[List[str]], List[str]]) -> List[str]:
        """
        Apply ``mutate`` to a class list with compare-and-swap retries.

        An empty result deletes the list so the class stops being checked.
        """
        key = f"{CLASS_PREFIX}{class_name}"
        for _ in range(MAX_LIST_UPDATE_ATTEMPTS):
            value, version = await self.kv.get_versioned(key)
            current = list(value) if isinstance(value, list) else []
            updated = mutate(current)

            if updated == current and value is not None:
                return updated
            if not updated:
                if value is None or await self.kv.delete_if_version(key, version):
                    return updated
                continue
            if await self.kv.set_if_version(key, updated, version):
                return updated

        raise SubscriptionConflictError(f"Could not update {key}")

    async def register(self, device_token: str, class_name: str, username: Optional[str] = None) -> DeviceRegistration:
        """
        Subscribe a device to a class.

        A device belongs to one class at a time; registering it under a new
        class removes it from the previous one.
        """
        previous = await self.get_device(device_token)
        if previous is not None and previous.class_name != class_name:
            await self._update_class_list(
                previous.class_name, lambda tokens: [t for t in tokens if t != device_token]
            )
            self.logger.info(
                "Moved device to another class",
                device=short_token(device_token),
                old_class=previous.class_name,
                class_name=class_name,
            )

        registration = DeviceRegistration(device_token=device_token, class_name=class_name, username=username)
        await self.kv.set(f"{DEVICE_PREFIX}{device_token}", registration.to_store())
        await self._update_class_list(
            class_name, lambda tokens: tokens if device_token in tokens else tokens + [device_token]
        )

        self.logger.info("Registered device", device=short_token(device_token), class_name=class_name)
        return registration

    async def unregister(self, device_token: str) -> bool:
        """
        Remove a device entirely.

        Returns:
            True if the device had a registration record
        """
        registration = await self.get_device(device_token)
        if registration is not None:
            await self._update_class_list(
                registration.class_name, lambda tokens: [t for t in tokens if t != device_token]
            )
        await self.kv.delete(f"{DEVICE_PREFIX}{device_token}")
        self.logger.info("Unregistered device", device=short_token(device_token), known=registration is not None)
        return registration is not None

    async def remove_device(self, device_token: str, class_name: Optional[str] = None) -> None:
        """
        Drop a device whose token was rejected by the push gateway.

        Args:
            device_token: Rejected token
            class_name: Class list to prune; looked up from the registration when omitted
        """
        if class_name is None:
            registration = await self.get_device(device_token)
            class_name = registration.class_name if registration else None

        if class_name is not None:
            await self._update_class_list(class_name, lambda tokens: [t for t in tokens if t != device_token])
        await self.kv.delete(f"{DEVICE_PREFIX}{device_token}")
        self.logger.info("Removed invalid device", device=short_token(device_token), class_name=class_name)

    async def get_device(self, device_token: str) -> Optional[DeviceRegistration]:
        value = await self.kv.get(f"{DEVICE_PREFIX}{device_token}")
        if not isinstance(value, dict):
            return None
        try:
            return DeviceRegistration.model_validate(value)
        except ValidationError as e:
            self.logger.warning("Unreadable device record", device=short_token(device_token), error=str(e))
            return None

    async def devices_for_class(self, class_name: str) -> List[str]:
        value = await self.kv.get(f"{CLASS_PREFIX}{class_name}")
        if not isinstance(value, list):
            return []
        return [str(token) for token in value]

    async def list_classes(self) -> List[str]:
        return [key[len(CLASS_PREFIX):] for key in await self.kv.keys(CLASS_PREFIX)]

    async def list_devices(self) -> List[str]:
        return [key[len(DEVICE_PREFIX):] for key in await self.kv.keys(DEVICE_PREFIX)]
