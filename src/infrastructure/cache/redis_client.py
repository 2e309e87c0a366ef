# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for learner state and message brokering.

This module provides an async Redis client wrapper with per-learner key
isolation. Learner keys are prefixed with {key_prefix}:user:{user_id}: so
all data of one learner can be found (and erased) by pattern.

Example:
    from src.infrastructure.cache import init_redis, get_redis

    # Initialize at startup
    await init_redis(settings)

    # Use the client
    redis = get_redis()
    await redis.set(redis.user_key("u-1", "graph"), graph_dict)
"""

import json
import re
from typing import TYPE_CHECKING, Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from src.core.config.settings import Settings

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")

# Module-level state
_redis_client: Optional["RedisClient"] = None


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so value matches only itself in SCAN MATCH."""
    return _GLOB_CHARS.sub(r"\\\1", value)


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the Redis error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client with per-learner key isolation.

    This client wraps the redis-py async client and provides:
    - Connection pooling
    - Learner-scoped key prefixing
    - JSON serialization/deserialization
    - Sorted-set helpers for score and review-date indexes
    - Transactional pipelines for optimistic read-modify-write

    Example:
        client = RedisClient(settings)
        await client.connect()

        key = client.user_key("u-1", "mastery:photosynthesis")
        await client.set(key, {"mastery_score": 0.5})
        data = await client.get(key)

        await client.close()
    """

    USER_KEY_PREFIX = "user"

    def __init__(self, settings: "Settings", redis: Optional[Redis] = None) -> None:
        """Initialize the Redis client.

        Args:
            settings: Application settings containing Redis configuration.
            redis: Optional pre-built connection (used by tests).
        """
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)

            # Verify connection
            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        """Ensure the client is connected.

        Returns:
            The Redis client instance.

        Raises:
            RedisError: If not connected.
        """
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    def user_key(self, user_id: str, key: str) -> str:
        """Build a learner-scoped key.

        Args:
            user_id: The learner id.
            key: The key within the learner's namespace.

        Returns:
            Key prefixed with {key_prefix}:user:{user_id}:
        """
        return f"{self._settings.storage.key_prefix}:{self.USER_KEY_PREFIX}:{user_id}:{key}"

    @staticmethod
    def serialize(value: Any) -> str:
        """Serialize a value to JSON string."""
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    @staticmethod
    def deserialize(value: Optional[str]) -> Any:
        """Deserialize a JSON string to Python object (None stays None)."""
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    # ========== Key-value operations ==========

    async def set(self, key: str, value: Any) -> None:
        """Store a value, JSON serialized unless it is already a string.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            await redis.set(key, self.serialize(value))
        except BaseRedisError as e:
            raise RedisError(f"Failed to set key: {key}", e) from e

    async def get(self, key: str) -> Any:
        """Get a value by key.

        Returns:
            The deserialized value or None if not found.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            value = await redis.get(key)
            return self.deserialize(value)
        except BaseRedisError as e:
            raise RedisError(f"Failed to get key: {key}", e) from e

    async def mget(self, keys: list[str]) -> list[Any]:
        """Get several values in one round trip, None for missing keys."""
        if not keys:
            return []
        redis = self._ensure_connected()
        try:
            values = await redis.mget(keys)
            return [self.deserialize(value) for value in values]
        except BaseRedisError as e:
            raise RedisError(f"Failed to get {len(keys)} keys", e) from e

    # ========== Sorted-set operations ==========

    async def zrange_by_score(
        self,
        key: str,
        min_score: float | str = "-inf",
        max_score: float | str = "+inf",
    ) -> list[str]:
        """Return sorted-set members with scores in [min_score, max_score].

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.zrangebyscore(key, min_score, max_score)
        except BaseRedisError as e:
            raise RedisError(f"Failed to range sorted set: {key}", e) from e

    async def zmembers(self, key: str) -> list[str]:
        """Return all members of a sorted set in score order."""
        redis = self._ensure_connected()
        try:
            return await redis.zrange(key, 0, -1)
        except BaseRedisError as e:
            raise RedisError(f"Failed to read sorted set: {key}", e) from e

    # ========== Transactions ==========

    def pipeline(self) -> Pipeline:
        """Create a transactional pipeline for WATCH/MULTI/EXEC.

        Raises:
            RedisError: If not connected.
        """
        return self._ensure_connected().pipeline(transaction=True)

    # ========== Learner operations ==========

    async def delete_user_keys(self, user_id: str, pattern: str = "*") -> int:
        """Delete all keys matching a pattern for a learner.

        Args:
            user_id: The learner id.
            pattern: Key pattern to match (default: all keys).

        Returns:
            Number of keys deleted.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        full_pattern = escape_glob(self.user_key(user_id, "")) + pattern

        try:
            keys = [key async for key in redis.scan_iter(match=full_pattern)]
            if keys:
                return await redis.delete(*keys)
            return 0
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete user keys: {user_id}/{pattern}", e) from e

    # ========== Health check ==========

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            redis = self._ensure_connected()
            await redis.ping()
            return True
        except (RedisError, BaseRedisError):
            return False


# ========== Module-level functions ==========


async def init_redis(settings: "Settings") -> None:
    """Initialize the global Redis client.

    This should be called once at application startup.

    Raises:
        RedisError: If connection fails.
    """
    global _redis_client

    _redis_client = RedisClient(settings)
    await _redis_client.connect()


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RedisError: If Redis has not been initialized.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client
