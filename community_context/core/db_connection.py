from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from community_context.core.config import Settings
from community_context.core.logger import logs
from community_context.repos.cache_store import CacheStore, MemoryCacheStore
import logging

class AsyncDBConnection:
    """
    Manages the asynchronous connection to the MongoDB database.
    Only used when STORAGE_MODE=mongodb
    """
    _client: AsyncIOMotorClient | None = None

    def __init__(self, mongo_uri: str, db_name: str):
        self.db_name = db_name
        if AsyncDBConnection._client is None:
            # Motor client is non-blocking
            AsyncDBConnection._client = AsyncIOMotorClient(mongo_uri, serverSelectionTimeoutMS=3000)
            logs.log(logging.INFO, "MongoDB connection initialized")

    def get_database(self) -> AsyncIOMotorDatabase:
        return AsyncDBConnection._client[self.db_name]


def build_cache_store(config: Settings) -> CacheStore | None:
    """
    Picks the cache backend from STORAGE_MODE.
    "none" disables caching entirely (every request fetches fresh).
    """
    mode = config.STORAGE_MODE.lower()
    if mode == "mongodb":
        from community_context.repos.mongo_repo import MongoCacheStore
        connection = AsyncDBConnection(config.MONGO_URI, config.MONGO_DB_NAME)
        return MongoCacheStore(connection.get_database())
    if mode == "local":
        from community_context.repos.local_repo import LocalCacheStore
        return LocalCacheStore(config.LOCAL_CACHE_DIR)
    if mode == "none":
        logs.log(logging.WARNING, "Caching disabled - STORAGE_MODE is 'none'")
        return None
    logs.log(logging.INFO, "Using in-memory cache store")
    return MemoryCacheStore()
