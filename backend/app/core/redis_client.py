# app/core/redis_client.py
import redis.asyncio as redis
from loguru import logger

from app.core.config import settings

_redis_client: redis.Redis | None = None


async def connect_redis():
    """Connects to Redis when a Redis URL is configured."""
    global _redis_client
    if _redis_client is not None:
        logger.debug("Redis connection already established.")
        return
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, skipping Redis connection.")
        return
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        await client.ping()
        _redis_client = client
        logger.success(f"Connected to Redis: {settings.REDIS_URL.split('@')[-1]}")
    except Exception as e:
        logger.critical(f"FATAL: Failed to connect to Redis: {e}")
        _redis_client = None
        raise RuntimeError(f"Failed to connect to Redis: {e}") from e


async def close_redis():
    """Closes the Redis connection pool."""
    global _redis_client
    if _redis_client is None:
        return
    logger.info("Closing Redis connection...")
    try:
        await _redis_client.aclose()
        logger.info("Redis connection closed.")
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}")
    finally:
        _redis_client = None


def get_redis_client() -> redis.Redis:
    """Provides the singleton Redis client. Raises RuntimeError if not connected."""
    if _redis_client is None:
        raise RuntimeError("Redis not connected. Ensure connect_redis() was called successfully.")
    return _redis_client
