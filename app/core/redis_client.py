"""Redis client configuration and utilities."""

import json
import uuid
from typing import Any, cast

import redis
import structlog
from arq.connections import RedisSettings

from app.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            ssl=settings.redis_ssl,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


def get_arq_redis_settings() -> RedisSettings:
    """Redis settings for the arq worker and job pool."""
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username or None,
        password=settings.redis_password or None,
        ssl=settings.redis_ssl,
        conn_timeout=15,
        conn_retry_delay=1,
    )


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class SweepLock:
    """
    Redis-based mutual exclusion for scheduled sweeps.

    Only one worker instance may run a given sweep at a time. The lock expires
    on its own so a crashed worker cannot block the sweep forever.
    """

    def __init__(self, redis_client: redis.Redis, name: str, ttl: int | None = None):
        """Initialize lock for a sweep name."""
        self.redis = redis_client
        self.key = f"automation:sweep-lock:{name}"
        self.ttl = ttl or settings.sweep_lock_ttl_seconds
        self.token = uuid.uuid4().hex

    def acquire(self) -> bool:
        """
        Try to take the lock without blocking.

        Returns:
            True if acquired, False if another holder owns it
        """
        try:
            return bool(self.redis.set(self.key, self.token, nx=True, ex=self.ttl))
        except Exception as e:
            # Redis down: run anyway, the database constraints still hold
            logger.warning("sweep_lock_unavailable", key=self.key, error=str(e))
            return True

    def release(self) -> None:
        """Release the lock if we still own it."""
        try:
            current = self.redis.get(self.key)
            if current is not None and str(current) == self.token:
                self.redis.delete(self.key)
        except Exception as e:
            logger.warning("sweep_lock_release_failed", key=self.key, error=str(e))


# Cache helpers
class CacheManager:
    """Redis-based cache manager."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client

    def delete(self, key: str) -> bool:
        """Delete key from cache."""
        try:
            self.redis.delete(key)
            return True
        except Exception:
            return False

    def get_json(self, key: str) -> Any | None:
        """
        Get JSON value from cache and deserialize.

        Args:
            key: Cache key

        Returns:
            Deserialized object or None
        """
        try:
            value = cast(str | None, self.redis.get(key))
            if value:
                return json.loads(value)
            return None
        except Exception:
            return None

    def set_json(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """
        Serialize and set JSON value in cache.

        Args:
            key: Cache key
            value: Value to serialize and cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            json_value = json.dumps(value, default=str)
            if ttl:
                self.redis.setex(key, ttl, json_value)
            else:
                self.redis.set(key, json_value)
            return True
        except Exception:
            return False
