"""
Storage Module - Black Box Interface

Purpose: Abstract all data persistence
Interface: StorageModule.connect(), run_transaction(), digest()
Hidden: Redis specifics, connection pooling, optimistic locking

Can be replaced with any storage backend without affecting other modules.
"""

import hashlib
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import WatchError

from ...errors import StoreContention

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_RETRIES = 8


class StorageModule:
    """Black box storage abstraction."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ):
        """Initialize storage with connection settings."""
        self.url = f"redis://{host}:{port}/{db}"
        self.password = password
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> redis.Redis:
        """
        Get storage connection and confirm it answers.

        Raises:
            redis.ConnectionError: If Redis is unreachable
        """
        if not self._client:
            # Password passed separately to avoid URL encoding issues
            self._client = redis.from_url(
                self.url,
                password=self.password,
                encoding="utf-8",
                decode_responses=True,
            )
        await self._client.ping()
        return self._client

    async def disconnect(self):
        """Close storage connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


def digest(value: str) -> str:
    """SHA-256 hex digest used to index secrets without storing them as keys."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


async def run_transaction(
    client: redis.Redis,
    keys: Sequence[str],
    body: Callable[[Any], Awaitable[Any]],
    retries: int = DEFAULT_TRANSACTION_RETRIES,
) -> Any:
    """
    Run an optimistic WATCH/MULTI transaction.

    ``body`` receives the pipeline while the keys are watched: reads are
    executed immediately, then ``body`` must call ``pipe.multi()`` and queue
    its writes. If it returns without calling ``multi()`` nothing is written.
    A concurrent write to any watched key aborts the attempt and ``body``
    runs again against fresh state.

    Returns:
        Whatever ``body`` returned on the attempt that committed

    Raises:
        StoreContention: If every attempt lost the race
    """
    for attempt in range(retries):
        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(*keys)
                result = await body(pipe)
                if pipe.explicit_transaction:
                    await pipe.execute()
                return result
            except WatchError:
                logger.debug(f"Transaction on {list(keys)} retrying (attempt {attempt + 1})")
                continue

    raise StoreContention("The store is busy, please retry")


__all__ = ["StorageModule", "digest", "run_transaction"]
