from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from community_context.core.errors import CacheUnavailable
from community_context.repos.cache_store import CacheStore


class MongoCacheStore(CacheStore):
    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "community_cache"):
        self.collection = db[collection_name]
        self._index_ready = False

    async def _ensure_index(self):
        """
        Mongo removes documents once expires_at passes (TTL monitor runs ~every 60s),
        so reads still filter on expires_at themselves.
        """
        if self._index_ready:
            return
        await self.collection.create_index("expires_at", expireAfterSeconds=0)
        self._index_ready = True

    async def get(self, key: str) -> Optional[Any]:
        now = datetime.now(timezone.utc)
        try:
            doc = await self.collection.find_one({
                "_id": key,
                "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}]
            })
        except PyMongoError as e:
            raise CacheUnavailable(str(e)) from e
        return doc["value"] if doc else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        """
        Upserts the value under its key.
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        try:
            await self._ensure_index()
            await self.collection.update_one(
                {"_id": key},
                {"$set": {"value": value, "timestamp": now, "expires_at": expires_at}},
                upsert=True
            )
        except PyMongoError as e:
            raise CacheUnavailable(str(e)) from e

    async def ttl(self, key: str) -> Optional[int]:
        try:
            doc = await self.collection.find_one({"_id": key}, {"expires_at": 1})
        except PyMongoError as e:
            raise CacheUnavailable(str(e)) from e
        if not doc or not doc.get("expires_at"):
            return None
        expires_at = doc["expires_at"]
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        remaining = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        return remaining if remaining > 0 else None
