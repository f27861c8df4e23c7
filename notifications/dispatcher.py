"""
Notification dispatch to the devices subscribed to a class.

This module provides:
- Per-class fan-out of schedule change alerts
- Pruning of devices the push gateway reports as invalid
- Token probing for periodic subscription cleanup
- Test pushes for a single class
"""

import asyncio
from typing import List, Tuple

import structlog

from notifications.apns import ApnsClient, build_payload
from notifications.models import CleanupReport, DeviceDelivery, DispatchReport, PushResult, PushStatus
from notifications.subscriptions import SubscriptionStore
from scheduler.messages import NOTIFICATION_TITLE, TEST_NOTIFICATION_BODY, TEST_NOTIFICATION_TITLE
from utilities.logger import short_token

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Sends alerts to every device of a class and prunes dead tokens."""

    def __init__(self, subscriptions: SubscriptionStore, push_client: ApnsClient):
        """
        Initialize the dispatcher.

        Args:
            subscriptions: Subscription store used to look up and prune devices
            push_client: Push transport with ``send`` and ``check_token``
        """
        self.subscriptions = subscriptions
        self.push_client = push_client
        self.logger = logger.bind(component="dispatcher")

    async def _push_one(self, device_token: str, payload: dict) -> Tuple[str, PushResult]:
        try:
            result = await self.push_client.send(device_token, payload)
        except Exception as e:
            self.logger.error("Push raised", device=short_token(device_token), error=str(e))
            result = PushResult(status=PushStatus.FAILED, reason=str(e))
        return device_token, result

    async def _fan_out(self, class_name: str, payload: dict) -> DispatchReport:
        devices = await self.subscriptions.devices_for_class(class_name)
        report = DispatchReport(class_name=class_name, devices=len(devices))

        if not devices:
            self.logger.info("No devices for class", class_name=class_name)
            return report

        outcomes = await asyncio.gather(*(self._push_one(token, payload) for token in devices))

        # Pruning rewrites the class list, so it runs one device at a time.
        for device_token, result in outcomes:
            delivery = DeviceDelivery(
                device=short_token(device_token),
                status=result.status,
                status_code=result.status_code,
                reason=result.reason,
            )

            if result.status == PushStatus.SUCCESS:
                report.sent += 1
            else:
                report.failed += 1

            if result.status == PushStatus.INVALID:
                try:
                    await self.subscriptions.remove_device(device_token, class_name)
                    delivery.removed = True
                    report.removed += 1
                except Exception as e:
                    self.logger.error(
                        "Failed to remove invalid device",
                        device=delivery.device,
                        class_name=class_name,
                        error=str(e),
                    )

            report.deliveries.append(delivery)

        self.logger.info(
            "Dispatched notifications",
            class_name=class_name,
            devices=report.devices,
            sent=report.sent,
            failed=report.failed,
            removed=report.removed,
        )
        return report

    async def dispatch(self, class_name: str, delta: int, message: str) -> DispatchReport:
        """
        Notify every device subscribed to ``class_name``.

        One device failing never stops delivery to the others. Devices the
        gateway reports as invalid are removed from the class; other failures
        are only logged and wait for the next poll.

        Args:
            class_name: Class whose schedule changed
            delta: Badge number for the alert
            message: Alert body text

        Returns:
            DispatchReport with per-device outcomes
        """
        payload = build_payload(NOTIFICATION_TITLE, message, delta)
        return await self._fan_out(class_name, payload)

    async def send_test_push(self, class_name: str) -> DispatchReport:
        """Send the fixed test alert to every device of a class."""
        payload = build_payload(TEST_NOTIFICATION_TITLE, TEST_NOTIFICATION_BODY, 1)
        return await self._fan_out(class_name, payload)

    async def prune_invalid_devices(self, dry_run: bool = False) -> CleanupReport:
        """
        Probe every registered device and drop the ones the gateway rejects.

        Probes that time out or fail for any other reason count as valid.

        Args:
            dry_run: Only report invalid devices, do not remove them
        """
        devices: List[str] = await self.subscriptions.list_devices()
        report = CleanupReport(dry_run=dry_run, checked=len(devices))

        for device_token in devices:
            try:
                result = await self.push_client.check_token(device_token)
            except Exception as e:
                self.logger.warning("Token probe raised", device=short_token(device_token), error=str(e))
                result = PushResult(status=PushStatus.FAILED, reason=str(e))

            if result.status != PushStatus.INVALID:
                report.valid += 1
                continue

            report.invalid += 1
            delivery = DeviceDelivery(
                device=short_token(device_token),
                status=result.status,
                status_code=result.status_code,
                reason=result.reason,
            )
            if not dry_run:
                await self.subscriptions.remove_device(device_token)
                delivery.removed = True
                report.removed += 1
            report.invalid_devices.append(delivery)

        self.logger.info(
            "Token cleanup complete",
            dry_run=dry_run,
            checked=report.checked,
            valid=report.valid,
            invalid=report.invalid,
            removed=report.removed,
        )
        return report
