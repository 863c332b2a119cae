"""Shared ARQ and Redis clients for enqueueing background jobs."""

import redis.asyncio as redis
from arq import create_pool
from arq.connections import RedisSettings

from .config import settings

_arq_pool = None
_redis_client = None


def get_redis_settings() -> RedisSettings:
    return RedisSettings(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        database=settings.REDIS_DB,
    )


async def get_arq_pool():
    """Get or create ARQ connection pool for the ingestion queue."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(
            get_redis_settings(),
            default_queue_name=settings.QUEUE_NAME,
        )
    return _arq_pool


def create_redis_client() -> redis.Redis:
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        db=settings.REDIS_DB,
        decode_responses=True,
        socket_connect_timeout=3,
    )


async def get_redis_client():
    """Get or create Redis client (job state hashes)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis_client()
    return _redis_client


async def close_clients():
    global _arq_pool, _redis_client
    if _arq_pool is not None:
        await _arq_pool.aclose()
        _arq_pool = None
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
