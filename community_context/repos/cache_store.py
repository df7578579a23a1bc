"""
Key/value cache abstraction shared by every cache tier.
"""
import copy
import time
from abc import ABC, abstractmethod
from typing import Any, Optional


class CacheStore(ABC):
    """Base class for all cache backends"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when missing or expired"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a JSON-serialisable value. No ttl means no expiry."""
        pass

    @abstractmethod
    async def ttl(self, key: str) -> Optional[int]:
        """Seconds left before expiry, None when missing or non-expiring"""
        pass

    def get_backend_name(self) -> str:
        return self.__class__.__name__


class MemoryCacheStore(CacheStore):
    """In-process store. Default backend and the test double."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (copy.deepcopy(value), expires_at)

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._data.get(key)
        if entry is None or entry[1] is None:
            return None
        remaining = int(entry[1] - self._clock())
        return remaining if remaining > 0 else None

    def keys(self) -> list[str]:
        return list(self._data.keys())
