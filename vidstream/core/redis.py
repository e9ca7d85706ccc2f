"""
Async Redis client singleton for the job status mirror.
Provides connection pooling and health checking.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from vidstream.core.config import get_settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[aioredis.Redis] = None


async def get_async_redis_client() -> aioredis.Redis:
    """
    Get or create the async Redis client singleton.

    Returns:
        Redis client instance

    Raises:
        redis.exceptions.ConnectionError: If unable to connect to Redis
    """
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        logger.info(
            f"Initializing Redis connection to {settings.redis_host}:{settings.redis_port}"
        )

        pool = aioredis.ConnectionPool(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
            max_connections=10,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        client = aioredis.Redis(connection_pool=pool)

        try:
            await client.ping()
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            raise

        _redis_client = client
        logger.info("Redis connection established successfully")

    return _redis_client


async def close_redis_client() -> None:
    """
    Close the Redis client connection and cleanup resources.
    Called on application shutdown.
    """
    global _redis_client

    if _redis_client is not None:
        logger.info("Closing Redis connection")
        try:
            await _redis_client.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
        finally:
            _redis_client = None


async def health_check() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if Redis is accessible, False otherwise
    """
    if not get_settings().redis_enabled:
        return False
    try:
        client = await get_async_redis_client()
        await client.ping()
        return True
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
