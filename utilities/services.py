"""
Construction of the shared service graph.

The scheduler daemon, the HTTP API and the admin CLI all work on the same
objects: one key-value store, the subscription store, the push client, the
dispatcher and the change detector built on top of them.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from notifications.apns import ApnsClient
from notifications.dispatcher import NotificationDispatcher
from notifications.subscriptions import SubscriptionStore
from scheduler.change_detector import ChangeDetector
from storage.database import MongoKeyValueStore
from storage.kv import KeyValueStore, MemoryKeyValueStore
from timetable.fetcher import ScheduleFetcher
from utilities.config import MonitorConfig, config

logger = structlog.get_logger(__name__)


def create_kv_store(settings: MonitorConfig = config) -> KeyValueStore:
    """Key-value backend selected by ``storage_backend``."""
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage; state is lost on restart")
        return MemoryKeyValueStore()
    return MongoKeyValueStore(
        connection_url=settings.mongodb_url,
        database_name=settings.mongodb_database,
        collection_name=settings.kv_collection,
    )


@dataclass
class MonitorServices:
    kv: KeyValueStore
    subscriptions: SubscriptionStore
    push_client: ApnsClient
    dispatcher: NotificationDispatcher
    fetcher: ScheduleFetcher
    detector: ChangeDetector

    async def connect(self) -> None:
        await self.kv.connect()

    async def close(self) -> None:
        await self.fetcher.close()
        await self.push_client.close()
        await self.kv.disconnect()

    async def status(self) -> Dict:
        """Device count, registered classes, last run and cache size."""
        classes = await self.subscriptions.list_classes()
        devices = await self.subscriptions.list_devices()
        return {
            "devices": len(devices),
            "classes": classes,
            "class_count": len(classes),
            "last_check": await self.detector.last_check() or "never",
            "cache_entries": await self.detector.cache.count(),
        }


def build_services(
    kv: Optional[KeyValueStore] = None,
    push_client: Optional[ApnsClient] = None,
    fetcher: Optional[ScheduleFetcher] = None,
    max_concurrent: Optional[int] = None,
) -> MonitorServices:
    """
    Wire up all services; any part can be replaced, which tests rely on.
    """
    kv = kv if kv is not None else create_kv_store()
    push_client = push_client if push_client is not None else ApnsClient()
    fetcher = fetcher if fetcher is not None else ScheduleFetcher()
    subscriptions = SubscriptionStore(kv)
    dispatcher = NotificationDispatcher(subscriptions, push_client)
    detector = ChangeDetector(kv, fetcher, dispatcher, max_concurrent=max_concurrent)
    return MonitorServices(
        kv=kv,
        subscriptions=subscriptions,
        push_client=push_client,
        dispatcher=dispatcher,
        fetcher=fetcher,
        detector=detector,
    )
