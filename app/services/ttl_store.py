"""
Time-boxed key/value storage for ephemeral state (job progress).

``InMemoryTTLStore`` serves tests and single-process runs; ``MongoTTLStore``
keeps the rows in a collection with a TTL index on ``expires_at``. Mongo's
TTL monitor only sweeps about once a minute, so reads also drop rows that
have already expired.
"""
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from app.utils.logging_config import get_logger

logger = get_logger(__name__)


class TTLStore(ABC):
    @abstractmethod
    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class InMemoryTTLStore(TTLStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._data[key] = (self._clock() + ttl_seconds, value)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self):
        return len(self._data)


class MongoTTLStore(TTLStore):
    def __init__(self, collection, now: Callable[[], datetime] = datetime.utcnow):
        self.collection = collection
        self._now = now

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.collection.update_one(
            {"key": key},
            {"$set": {"value": value, "expires_at": self._now() + timedelta(seconds=ttl_seconds)}},
            upsert=True,
        )

    async def get(self, key: str) -> Optional[Any]:
        row = await self.collection.find_one({"key": key})
        if not row:
            return None
        expires_at = row.get("expires_at")
        if expires_at is not None and expires_at <= self._now():
            return None
        return row.get("value")

    async def delete(self, key: str) -> None:
        await self.collection.delete_one({"key": key})
