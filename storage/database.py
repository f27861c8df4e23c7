"""
MongoDB key-value backend for async operations.
Handles connection, indexing and versioned writes for schedule state.
"""

import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from storage.kv import MISSING_VERSION, KeyValueStore, decode_value

logger = structlog.get_logger(__name__)

# Documents written before versioning carry no version field and read as 1.
INITIAL_VERSION = 1


def _version_filter(key: str, version: int) -> dict:
    if version == INITIAL_VERSION:
        return {"_id": key, "$or": [{"version": version}, {"version": {"$exists": False}}]}
    return {"_id": key, "version": version}


class MongoKeyValueStore(KeyValueStore):
    """
    Key-value store on a single MongoDB collection.

    Each key is one document ``{_id: key, value, version, updated_at}``.
    Conditional writes filter on ``version`` so concurrent writers cannot
    overwrite each other silently.
    """

    def __init__(self, connection_url: str, database_name: str, collection_name: str):
        """
        Initialize the MongoDB store.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            collection_name: Name of the key-value collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.collection_name = collection_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.collection: Optional[AsyncIOMotorCollection] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]
            self.collection = self.database[self.collection_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB",
                        database=self.database_name,
                        collection=self.collection_name)

            await self.collection.create_index("updated_at")

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def ping(self) -> bool:
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.warning("MongoDB ping failed", error=str(e))
            return False

    async def get(self, key: str) -> Optional[Any]:
        value, _ = await self.get_versioned(key)
        return value

    async def set(self, key: str, value: Any) -> None:
        await self.collection.update_one(
            {"_id": key},
            {
                "$set": {"value": value, "updated_at": datetime.now(timezone.utc)},
                "$inc": {"version": 1},
            },
            upsert=True,
        )

    async def delete(self, key: str) -> bool:
        result = await self.collection.delete_one({"_id": key})
        return result.deleted_count > 0

    async def keys(self, prefix: str = "") -> List[str]:
        query = {"_id": {"$regex": f"^{re.escape(prefix)}"}} if prefix else {}
        cursor = self.collection.find(query, {"_id": 1}).sort("_id", 1)
        return [doc["_id"] async for doc in cursor]

    async def get_versioned(self, key: str) -> Tuple[Optional[Any], int]:
        doc = await self.collection.find_one({"_id": key})
        if doc is None:
            return None, MISSING_VERSION
        return decode_value(doc.get("value")), int(doc.get("version", INITIAL_VERSION))

    async def set_if_version(self, key: str, value: Any, expected_version: int) -> bool:
        now = datetime.now(timezone.utc)

        if expected_version == MISSING_VERSION:
            try:
                await self.collection.insert_one(
                    {"_id": key, "value": value, "version": INITIAL_VERSION, "updated_at": now}
                )
                return True
            except DuplicateKeyError:
                logger.debug("Key created concurrently", key=key)
                return False

        result = await self.collection.update_one(
            _version_filter(key, expected_version),
            {"$set": {"value": value, "updated_at": now}, "$inc": {"version": 1}},
        )
        if result.matched_count == 0:
            logger.debug("Version mismatch", key=key, expected=expected_version)
            return False
        return True

    async def delete_if_version(self, key: str, expected_version: int) -> bool:
        result = await self.collection.delete_one(_version_filter(key, expected_version))
        if result.deleted_count == 0:
            logger.debug("Version mismatch on delete", key=key, expected=expected_version)
            return False
        return True
