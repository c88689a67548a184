"""MongoDB storage backend: one document per key.

Document schema::

    {
        "key": "chat_messages_1767225600000",
        "value": [ {...}, {...} ],
        "updated_at": "2026-01-01T00:00:00+00:00"
    }

The session list lives under ``chat_sessions`` and each session's message
list under ``chat_messages_<session id>``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)

from chatrelay.config import settings
from chatrelay.storage.base import StorageBackend

logger = logging.getLogger(__name__)

COLLECTION_NAME = "chat_storage"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MongoStorage(StorageBackend):
    """Key/value storage on a MongoDB collection.

    Lifecycle:
        storage = MongoStorage()
        await storage.initialize()   # call once at startup
        ...
        await storage.close()        # call once at shutdown
    """

    def __init__(
        self,
        uri: str | None = None,
        database_name: str | None = None,
        collection_name: str = COLLECTION_NAME,
    ) -> None:
        self._uri = uri or settings.mongodb_uri
        self._database_name = database_name or settings.mongodb_database
        self._collection_name = collection_name
        self._client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None
        self._collection: AsyncIOMotorCollection | None = None

    async def initialize(self) -> None:
        if self._client is not None:
            logger.warning("MongoStorage already initialized - skipping")
            return

        logger.info("Connecting to MongoDB at %s", self._uri)
        self._client = AsyncIOMotorClient(self._uri, serverSelectionTimeoutMS=5_000)
        self._db = self._client[self._database_name]
        self._collection = self._db[self._collection_name]
        await self._client.admin.command("ping")
        await self._collection.create_index("key", unique=True)
        logger.info("MongoDB connection established")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            self._collection = None
            logger.info("MongoDB connection closed")

    def _require_collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            raise RuntimeError("MongoStorage not initialized. Call initialize() first.")
        return self._collection

    async def get(self, key: str) -> Any | None:
        doc = await self._require_collection().find_one(
            {"key": key}, {"value": 1, "_id": 0}
        )
        if doc is None:
            return None
        return doc.get("value")

    async def set(self, key: str, value: Any) -> None:
        await self._require_collection().update_one(
            {"key": key},
            {"$set": {"value": value, "updated_at": _now_iso()}},
            upsert=True,
        )

    async def delete(self, key: str) -> bool:
        result = await self._require_collection().delete_one({"key": key})
        return result.deleted_count > 0

    async def ping(self) -> dict[str, Any]:
        try:
            if self._client is None:
                return {"status": "unhealthy", "backend": "mongodb", "error": "not initialized"}
            await self._client.admin.command("ping")
            return {"status": "healthy", "backend": "mongodb"}
        except Exception as exc:
            logger.warning("MongoDB health check failed: %s", exc)
            return {"status": "unhealthy", "backend": "mongodb", "error": str(exc)}
