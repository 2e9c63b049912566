"""
Async Redis client factory for the job queue.
Provides connection pooling and health checking.
"""
import logging
from typing import Optional

import redis.asyncio as redis

from video_pipeline.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_async_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """
    Create an async Redis client backed by a connection pool.

    The client is not shared through module state; the JobSystem that creates
    it owns it and closes it on shutdown.

    Args:
        settings: Application settings (defaults to the global settings)

    Returns:
        redis.asyncio.Redis instance with decoded responses
    """
    settings = settings or get_settings()

    if settings.redis_url:
        logger.info("Initializing Redis connection from REDIS_URL")
        return redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=10,
            socket_connect_timeout=5,
        )

    logger.info(
        f"Initializing Redis connection to {settings.redis_host}:{settings.redis_port}"
    )
    pool = redis.ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        decode_responses=True,  # Automatically decode bytes to strings
        max_connections=10,
        socket_connect_timeout=5,
    )
    return redis.Redis(connection_pool=pool)


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    """
    Close a Redis client and release its pool.
    Errors are logged, never raised: shutdown must continue.
    """
    if client is None:
        return
    try:
        logger.info("Closing Redis connection")
        await client.aclose()
        logger.info("Redis connection closed successfully")
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}")


async def health_check(client: redis.Redis) -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if Redis is accessible, False otherwise
    """
    try:
        await client.ping()
        return True
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
