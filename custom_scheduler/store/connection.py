"""
Redis connection management.
Handles the async Redis client shared by the API and the monitor.
"""

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from custom_scheduler.config import get_settings
from custom_scheduler.errors import StoreUnavailableError
from custom_scheduler.store.repository import JobStore

logger = logging.getLogger(__name__)

# Global client instance
_client: Redis | None = None


def create_client(redis_url: str | None = None) -> Redis:
    """
    Create an async Redis client.

    Args:
        redis_url: Redis URL. Defaults to the configured ``redis_url``.

    Returns:
        Redis: A client decoding responses to ``str``.
    """
    settings = get_settings()
    return Redis.from_url(
        redis_url or settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_connect_timeout_seconds,
    )


async def init_store(client: Redis | None = None) -> Redis:
    """
    Initialize the shared Redis client and verify it is reachable.
    Should be called on application startup.

    Args:
        client: Optional pre-built client. A new one is created from
            settings when omitted.

    Returns:
        Redis: The connected client.

    Raises:
        StoreUnavailableError: If Redis does not answer a PING.
    """
    global _client
    settings = get_settings()
    candidate = client or create_client()

    try:
        await asyncio.wait_for(
            candidate.ping(),
            timeout=settings.redis_connect_timeout_seconds,
        )
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        await candidate.aclose()
        raise StoreUnavailableError(f"failed to connect to redis: {e}") from e

    _client = candidate
    logger.info("Connected to Redis", extra={"redis": settings.redis_url})
    return candidate


async def close_store() -> None:
    """
    Close the Redis connection.
    Should be called on application shutdown.
    """
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")


def get_redis() -> Redis:
    """
    Get the shared Redis client.

    Raises:
        RuntimeError: If the store is not initialized.
    """
    if _client is None:
        raise RuntimeError("Store not initialized. Call init_store() first.")
    return _client


def get_store() -> JobStore:
    """
    Dependency for getting the job index.

    Returns:
        JobStore: A job store bound to the shared client.
    """
    return JobStore(get_redis())
