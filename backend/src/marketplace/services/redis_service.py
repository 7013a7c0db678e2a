"""Redis service for per-auction locks and auction snapshot cache."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from redis.asyncio import Redis
from redis.exceptions import RedisError

from marketplace.core.config import settings
from marketplace.services.errors import Conflict, StorageFailure

logger = logging.getLogger(__name__)


class RedisService:
    """Service class for Redis operations."""

    # Lua script for safe lock release (only delete own lock)
    RELEASE_LOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    # Write a snapshot hash only if it is newer than the cached one.
    # ARGV: version, ttl, then field/value pairs
    CACHE_SNAPSHOT_SCRIPT = """
    local cached = redis.call("HGET", KEYS[1], "version")
    if cached and tonumber(cached) >= tonumber(ARGV[1]) then
        return 0
    end
    redis.call("DEL", KEYS[1])
    redis.call("HSET", KEYS[1], unpack(ARGV, 3))
    redis.call("EXPIRE", KEYS[1], tonumber(ARGV[2]))
    return 1
    """

    LOCK_POLL_INTERVAL = 0.01  # seconds between SET NX attempts

    def __init__(self, redis: Redis):
        """Initialize Redis service with a Redis client.

        Args:
            redis: Async Redis client instance
        """
        self.redis = redis
        self._release_lock_script = None
        self._cache_snapshot_script = None

    async def _get_release_lock_script(self):
        """Get or register the release lock Lua script."""
        if self._release_lock_script is None:
            self._release_lock_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        return self._release_lock_script

    async def _get_cache_snapshot_script(self):
        """Get or register the versioned snapshot write Lua script."""
        if self._cache_snapshot_script is None:
            self._cache_snapshot_script = self.redis.register_script(self.CACHE_SNAPSHOT_SCRIPT)
        return self._cache_snapshot_script

    # ==================== Distributed Lock Operations ====================

    async def acquire_lock(
        self, auction_id: str, owner_id: str | None = None, ttl: int | None = None
    ) -> tuple[bool, str]:
        """Try once to acquire the distributed lock for an auction.

        Key pattern: lock:auction:{auction_id}
        Uses SET NX EX for atomic lock acquisition.

        Args:
            auction_id: Auction UUID string
            owner_id: Unique identifier for lock owner (auto-generated if None)
            ttl: Lock timeout in seconds (defaults to AUCTION_LOCK_TTL_SECONDS)

        Returns:
            Tuple of (success, owner_id)
        """
        key = f"lock:auction:{auction_id}"
        if owner_id is None:
            owner_id = str(uuid.uuid4())
        if ttl is None:
            ttl = settings.AUCTION_LOCK_TTL_SECONDS

        acquired = await self.redis.set(key, owner_id, nx=True, ex=ttl)
        return (bool(acquired), owner_id)

    async def release_lock(self, auction_id: str, owner_id: str) -> bool:
        """Release a distributed lock (only if owner matches).

        Args:
            auction_id: Auction UUID string
            owner_id: The owner_id returned from acquire_lock

        Returns:
            True if lock was released, False if not owner or not locked
        """
        key = f"lock:auction:{auction_id}"
        script = await self._get_release_lock_script()
        result = await script(keys=[key], args=[owner_id])
        return int(result) == 1

    @asynccontextmanager
    async def auction_lock(
        self, auction_id: str, wait: float | None = None
    ) -> AsyncIterator[str]:
        """Hold the auction lock for the duration of the block.

        Retries SET NX until ``wait`` seconds have passed. A failed release is
        logged only; the key still expires after its TTL.

        Raises:
            Conflict: The lock stayed busy for the whole wait
            StorageFailure: Redis could not be reached to take the lock
        """
        if wait is None:
            wait = settings.AUCTION_LOCK_WAIT_SECONDS

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        owner_id = str(uuid.uuid4())

        while True:
            try:
                acquired, _ = await self.acquire_lock(auction_id, owner_id=owner_id)
            except RedisError as e:
                logger.error(f"Could not take lock for auction {auction_id}: {e}")
                raise StorageFailure() from e
            if acquired:
                break
            if loop.time() >= deadline:
                raise Conflict("The auction is busy, please retry")
            await asyncio.sleep(self.LOCK_POLL_INTERVAL)

        try:
            yield owner_id
        finally:
            try:
                await self.release_lock(auction_id, owner_id)
            except RedisError as e:
                logger.warning(
                    f"Could not release lock for auction {auction_id}, "
                    f"it expires in {settings.AUCTION_LOCK_TTL_SECONDS}s: {e}"
                )

    # ==================== Auction Snapshot Cache ====================

    async def cache_auction_snapshot(
        self, auction_id: str, data: dict[str, Any], ttl: int | None = None
    ) -> bool:
        """Write auction polling data to a Redis Hash unless a newer one is there.

        Key pattern: auction:{auction_id}
        The hash must carry a ``version`` field. The write is skipped when the
        cached version is the same or newer.

        Args:
            auction_id: Auction UUID string
            data: Snapshot fields (all values will be converted to strings)
            ttl: TTL in seconds (defaults to SNAPSHOT_REDIS_TTL_SECONDS)

        Returns:
            True if the hash was written, False if a newer snapshot was kept
        """
        key = f"auction:{auction_id}"
        if ttl is None:
            ttl = settings.SNAPSHOT_REDIS_TTL_SECONDS
        args: list[str] = [str(int(data["version"])), str(ttl)]
        for field, value in data.items():
            args.extend([field, "" if value is None else str(value)])

        script = await self._get_cache_snapshot_script()
        result = await script(keys=[key], args=args)
        return int(result) == 1

    async def get_cached_auction_snapshot(self, auction_id: str) -> dict[str, str] | None:
        """Get cached auction polling data.

        Returns:
            Snapshot dict or None if not cached
        """
        key = f"auction:{auction_id}"
        data = await self.redis.hgetall(key)
        return data if data else None
