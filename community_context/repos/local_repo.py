"""
Local file-based cache store.
Uses JSON files instead of MongoDB.
"""
import json
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from community_context.core.errors import CacheUnavailable
from community_context.core.logger import logs
from community_context.repos.cache_store import CacheStore
import logging


class LocalCacheStore(CacheStore):
    """Stores each cache key in its own JSON file."""

    def __init__(self, cache_dir: str = "data/cache"):
        """Initialize local storage directory."""
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        logs.log(logging.INFO, f"Local file cache initialized at {self.cache_dir}")

    def _get_cache_file(self, cache_key: str) -> Path:
        """Get the file path for a cache key."""
        safe_key = re.sub(r"[^A-Za-z0-9_.-]", "_", cache_key)
        return self.cache_dir / f"{safe_key}.json"

    def _read(self, cache_key: str) -> Optional[dict]:
        cache_file = self._get_cache_file(cache_key)
        if not cache_file.exists():
            return None
        try:
            with open(cache_file, 'r') as f:
                cached = json.load(f)
        except (OSError, ValueError) as e:
            logs.log(logging.ERROR, f"Failed to read cache file {cache_file.name}: {str(e)}")
            raise CacheUnavailable(str(e)) from e

        expires_at = cached.get("expires_at")
        if expires_at and datetime.now() >= datetime.fromisoformat(expires_at):
            cache_file.unlink(missing_ok=True)  # Delete expired cache
            return None
        return cached

    async def get(self, key: str) -> Optional[Any]:
        cached = self._read(key)
        return cached["data"] if cached else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        now = datetime.now()
        cached = {
            "key": key,
            "data": value,
            "cached_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat() if ttl_seconds else None
        }
        try:
            with open(self._get_cache_file(key), 'w') as f:
                json.dump(cached, f, indent=2)
        except (OSError, TypeError) as e:
            logs.log(logging.ERROR, f"Failed to write cache key {key}: {str(e)}")
            raise CacheUnavailable(str(e)) from e

    async def ttl(self, key: str) -> Optional[int]:
        cached = self._read(key)
        if not cached or not cached.get("expires_at"):
            return None
        remaining = datetime.fromisoformat(cached["expires_at"]) - datetime.now()
        return max(int(remaining.total_seconds()), 0) or None
