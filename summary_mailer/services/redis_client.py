"""
Redis backing store for the text-generation response cache.

The cache is optional: reads and writes log and degrade to a miss
instead of raising, so an unreachable Redis never blocks a dispatch.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

from summary_mailer.config import settings
from summary_mailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 20


class FastRedisClient:
    def __init__(self, url: str | None = None):
        self.url = url if url is not None else settings.REDIS_URL
        self.client: redis.Redis | None = None

    async def initialize(self) -> None:
        if self.client is not None:
            return
        if not self.url:
            raise RuntimeError("REDIS_URL is not configured")

        client = redis.Redis.from_url(
            self.url,
            max_connections=MAX_CONNECTIONS,
            socket_connect_timeout=10,
            socket_timeout=10,
            health_check_interval=30,
            decode_responses=True,
        )
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            logger.error("Failed to initialize Redis client", error=str(e))
            raise RuntimeError("Redis initialization failed") from e

        self.client = client
        logger.info("Redis client initialized", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.aclose()
            logger.info("Redis client closed")
        except RedisError as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self.client = None

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        if self.client is None:
            return None
        try:
            return await self.client.get(key) or None
        except RedisError as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if self.client is None:
            return False
        try:
            if ttl_s:
                return bool(await self.client.setex(key, ttl_s, value))
            return bool(await self.client.set(key, value))
        except RedisError as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False


fast_redis = FastRedisClient()
