"""
Redis-backed snapshot cache.

Holds the newest published MatchSnapshot of every live match so that a
(re)joining participant or a recovering host can fetch the canonical state
without replaying the intent log.

This is a CACHE, not the source of truth. The intent log in PostgreSQL is
authoritative.

Key patterns:
- shithead:match:{match_id}:snapshot  -> JSON (latest MatchSnapshot)
"""

import logging
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis

from models.snapshot import MatchSnapshot
from stores.transport import TransportError

logger = logging.getLogger(__name__)


class SnapshotCache:
    """Redis-backed latest-snapshot cache."""

    # Key patterns
    SNAPSHOT_KEY = "shithead:match:{match_id}:snapshot"

    def __init__(self, redis_client: redis.Redis, ttl_hours: int = 24):
        """
        Initialize snapshot cache with Redis client.

        Args:
            redis_client: Async Redis client.
            ttl_hours: Expiry for abandoned matches.
        """
        self.redis = redis_client
        self.ttl = timedelta(hours=ttl_hours)

    @classmethod
    async def create(cls, redis_url: str, ttl_hours: int = 24) -> "SnapshotCache":
        """
        Create a SnapshotCache with a new Redis connection.

        Args:
            redis_url: Redis connection URL.
            ttl_hours: Expiry for abandoned matches.

        Returns:
            Configured SnapshotCache instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        # Test connection
        await client.ping()
        logger.info("SnapshotCache connected to Redis")
        return cls(client, ttl_hours)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.close()

    # -------------------------------------------------------------------------
    # Snapshot Operations
    # -------------------------------------------------------------------------

    async def save_snapshot(self, snapshot: MatchSnapshot) -> bool:
        """
        Store a snapshot unless a newer version is already cached.

        Args:
            snapshot: Snapshot to store.

        Returns:
            True if stored, False if the cache already held a newer version.

        Raises:
            TransportError: If Redis is unreachable.
        """
        try:
            current = await self.get_snapshot(snapshot.match_id)
            if current and current.version >= snapshot.version:
                logger.debug(
                    f"Skipping snapshot v{snapshot.version} for {snapshot.match_id}, "
                    f"cache already has v{current.version}"
                )
                return False

            await self.redis.set(
                self.SNAPSHOT_KEY.format(match_id=snapshot.match_id),
                snapshot.to_json(),
                ex=int(self.ttl.total_seconds()),
            )
            return True
        except redis.RedisError as e:
            raise TransportError(f"Failed to save snapshot for {snapshot.match_id}: {e}") from e

    async def get_snapshot(self, match_id: str) -> Optional[MatchSnapshot]:
        """
        Get the latest snapshot.

        Args:
            match_id: Match identifier.

        Returns:
            MatchSnapshot, or None if not cached.
        """
        try:
            data = await self.redis.get(self.SNAPSHOT_KEY.format(match_id=match_id))
        except redis.RedisError as e:
            raise TransportError(f"Failed to read snapshot for {match_id}: {e}") from e
        if not data:
            return None
        if isinstance(data, bytes):
            data = data.decode()
        return MatchSnapshot.from_json(data)
