"""
Shared async Redis connection and the class schedule cache.

Only the paginated class listing is cached. Its seat numbers go stale on
every reservation change, so the coordinator drops all listing pages after
each commit; the TTL bounds staleness if an invalidation is lost. Single
class reads and reservation status always hit the database.

Redis is optional: when it is disabled or unreachable every call here is a
miss or a no-op.
"""

import json
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from gym_booking.core.config import get_settings
from gym_booking.core.logging import get_logger
from gym_booking.core.metrics import record_cache_operation, redis_connection_errors

logger = get_logger(__name__)

CLASS_LIST_PREFIX = "classes:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """The shared client, or None when Redis is disabled or down."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is not None:
        return _redis_client

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    try:
        await client.ping()
    except RedisError as e:
        redis_connection_errors.inc()
        logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    _redis_client = client
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def class_list_key(page: int, page_size: int, upcoming_only: bool) -> str:
    return f"{CLASS_LIST_PREFIX}{page}:{page_size}:{int(upcoming_only)}"


async def get_cached_classes(page: int, page_size: int, upcoming_only: bool) -> Optional[dict]:
    client = await get_redis()
    if client is None:
        return None

    key = class_list_key(page, page_size, upcoming_only)
    try:
        data = await client.get(key)
    except RedisError as e:
        logger.warning("class_cache_read_failed", key=key, error=str(e))
        return None

    record_cache_operation("get", hit=data is not None)
    return json.loads(data) if data is not None else None


async def set_cached_classes(page: int, page_size: int, upcoming_only: bool, data: dict) -> None:
    client = await get_redis()
    if client is None:
        return

    key = class_list_key(page, page_size, upcoming_only)
    try:
        await client.set(key, json.dumps(data, default=str), ex=get_settings().REDIS_CACHE_TTL)
    except RedisError as e:
        logger.warning("class_cache_write_failed", key=key, error=str(e))


async def invalidate_class_cache() -> None:
    """Drop every cached listing page."""
    client = await get_redis()
    if client is None:
        return

    try:
        keys = [key async for key in client.scan_iter(match=f"{CLASS_LIST_PREFIX}*", count=100)]
        if keys:
            await client.unlink(*keys)
    except RedisError as e:
        logger.warning("class_cache_invalidation_failed", error=str(e))
        return
    logger.debug("class_cache_invalidated", keys_deleted=len(keys))


async def get_cache_stats() -> dict:
    """Connection state and server hit rate, reported by /health."""
    client = await get_redis()
    if client is None:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
