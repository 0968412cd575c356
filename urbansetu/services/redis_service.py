"""
Redis Caching Service for the UrbanSetu API

Caches dashboard reads (complaint lists and stats) and keeps the logout
deny-list for access tokens. Redis is optional: when REDIS_URL is not set
or the server is unreachable every call degrades to a cache miss.

Features:
- Automatic cache invalidation on complaint writes
- Configurable TTL (Time To Live)
- JSON serialization/deserialization
- Connection pooling
"""

import json
import logging
import asyncio
import hashlib
from typing import Any, Optional, List, Dict
from datetime import datetime
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.asyncio import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError

from urbansetu.core.config import get_settings

logger = logging.getLogger(__name__)

COMPLAINTS_PREFIX = "complaints:"
REVOKED_PREFIX = "revoked:"


class RedisService:
    """
    Redis caching service with graceful fallback when unavailable.
    """

    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None):
        settings = get_settings()
        self.redis_url = redis_url if redis_url is not None else settings.redis_url
        self.redis_client: Optional[redis.Redis] = None
        self.connection_pool: Optional[ConnectionPool] = None
        self.is_connected = False
        self.default_ttl = default_ttl or settings.cache_ttl

    async def connect(self) -> bool:
        """
        Establish connection to Redis server with connection pooling.

        Returns:
            bool: True if connection successful, False otherwise
        """
        redis_url = self.redis_url
        if not redis_url:
            logger.info("ℹ️ REDIS_URL not set. Redis caching disabled.")
            self.is_connected = False
            return False

        if not redis_url.startswith(("redis://", "rediss://", "unix://")):
            logger.warning(f"⚠️ Malformed REDIS_URL detected. Auto-fixing to 'redis://{redis_url}'")
            redis_url = f"redis://{redis_url}"

        try:
            pool_kwargs = {
                "decode_responses": True,
                "max_connections": 20,
                "retry_on_timeout": True,
                "socket_connect_timeout": 5,
                "socket_timeout": 5,
                "health_check_interval": 30,
            }
            if urlparse(redis_url).scheme == "rediss":
                pool_kwargs["ssl_cert_reqs"] = None
                logger.info("🔒 TLS (rediss) detected")

            self.connection_pool = ConnectionPool.from_url(redis_url, **pool_kwargs)
            self.redis_client = redis.Redis(connection_pool=self.connection_pool)

            await asyncio.wait_for(self.redis_client.ping(), timeout=5.0)
            self.is_connected = True
            logger.info("✅ Redis connected successfully")
            return True

        except asyncio.TimeoutError:
            logger.warning("⏰ Redis connection timeout - continuing without cache")
        except (ConnectionRefusedError, RedisConnectionError) as e:
            logger.warning(f"🚫 Redis connection refused: {e}")
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed: {str(e)}")
        self.is_connected = False
        return False

    async def disconnect(self):
        """
        Gracefully close Redis connection.
        """
        try:
            if self.redis_client:
                await self.redis_client.aclose()
            if self.connection_pool:
                await self.connection_pool.disconnect()
            self.is_connected = False
            logger.info("🔌 Redis connection closed")
        except Exception as e:
            logger.error(f"❌ Error closing Redis connection: {str(e)}")

    def _serialize_data(self, data: Any) -> str:
        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, default=json_serializer, ensure_ascii=False)

    async def get(self, key: str) -> Optional[Any]:
        """
        Get data from Redis cache.

        Returns:
            Optional[Any]: Cached data or None if not found/error
        """
        if not self.is_connected or not self.redis_client:
            return None

        try:
            cached_data = await self.redis_client.get(key)
            if cached_data:
                logger.debug(f"🎯 Cache HIT for key: {key}")
                return json.loads(cached_data)
            logger.debug(f"❌ Cache MISS for key: {key}")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Redis GET error for key {key}: {str(e)}")
            return None

    async def set(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        """
        Set data in Redis cache with TTL.

        Returns:
            bool: True if successful, False otherwise
        """
        if not self.is_connected or not self.redis_client:
            return False

        try:
            ttl = ttl or self.default_ttl
            await self.redis_client.setex(key, ttl, self._serialize_data(data))
            logger.debug(f"💾 Cache SET for key: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Redis SET error for key {key}: {str(e)}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all cache keys matching a pattern.

        Returns:
            int: Number of keys deleted
        """
        if not self.is_connected or not self.redis_client:
            return 0

        try:
            keys = await self.redis_client.keys(pattern)
            if keys:
                deleted = await self.redis_client.delete(*keys)
                logger.info(f"🧹 Cache invalidated {deleted} keys matching pattern: {pattern}")
                return deleted
            return 0
        except Exception as e:
            logger.warning(f"⚠️ Redis pattern invalidation error for {pattern}: {str(e)}")
            return 0

    # Complaint caches

    @staticmethod
    def complaints_key(kind: str, **params) -> str:
        raw = json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.md5(raw.encode("utf-8")).hexdigest()[:16]
        return f"{COMPLAINTS_PREFIX}{kind}:{digest}"

    async def get_cached_complaints(self, kind: str, **params) -> Optional[List[Dict]]:
        return await self.get(self.complaints_key(kind, **params))

    async def cache_complaints(self, data: Any, kind: str, **params) -> bool:
        return await self.set(self.complaints_key(kind, **params), data)

    async def invalidate_complaints_cache(self) -> int:
        return await self.invalidate_pattern(f"{COMPLAINTS_PREFIX}*")

    # Access token deny-list

    async def revoke_token(self, token_id: str, ttl: int) -> bool:
        return await self.set(f"{REVOKED_PREFIX}{token_id}", True, max(1, ttl))

    async def is_token_revoked(self, token_id: str) -> bool:
        return bool(await self.get(f"{REVOKED_PREFIX}{token_id}"))


# Global Redis service instance
redis_service: Optional[RedisService] = None


def get_redis_service() -> RedisService:
    """
    Get the global Redis service instance (not connected until init_redis runs).
    """
    global redis_service
    if redis_service is None:
        redis_service = RedisService()
    return redis_service


async def init_redis() -> RedisService:
    """
    Initialize Redis service with graceful error handling.
    Application will continue to work even if Redis is unavailable.
    """
    service = get_redis_service()
    try:
        await service.connect()
    except Exception as e:
        logger.warning(f"⚠️ Redis initialization failed: {str(e)} - continuing without caching")
    return service


async def close_redis():
    global redis_service
    if redis_service is not None:
        await redis_service.disconnect()
        redis_service = None
