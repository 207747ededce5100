"""
Redis caching service for stall listings.

CACHING STRATEGY
================

What we cache:
  - Stall listing responses (JSON-serialized), one entry per filter
  - Cache key pattern: "stalls:list:v{generation}:status={status}&size={size}"

Why:
  - The floor plan polls the listing far more often than anything else
  - Listings only change on reserve, cancel, or an admin edit

Invalidation strategy:
  - After every reserve, cancel, and stall mutation, bump the generation
    counter and delete all listing keys
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

  A reader captures the generation before it queries the store and writes
  under that generation. A listing read just before a booking commits is
  therefore stored under a generation nobody reads any more, instead of
  overwriting the fresh listing with a stale AVAILABLE status.

  All listing keys start with "stalls:list:" so we can SCAN and delete them.

Why NOT cache single stalls:
  - A stall page must show the real status right before booking
  - The allocation engine never reads from the cache; a stale listing can
    only cause a ConflictError on reserve, never a double booking
"""

import json
from typing import Optional

import redis.asyncio as redis
from stall_booking.core.config import get_settings
from stall_booking.core.logging import get_logger
from stall_booking.core.metrics import record_cache_operation, redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

LIST_KEY_PREFIX = "stalls:list:"
GENERATION_KEY = "stalls:generation"
INVALIDATION_BATCH = 500

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_stall_list_key(generation: int, status: Optional[str], size: Optional[str]) -> str:
    return f"{LIST_KEY_PREFIX}v{generation}:status={status or 'any'}&size={size or 'any'}"


async def listing_generation() -> Optional[int]:
    """
    Current listing generation, read before querying the store.

    None means caching is off for this request (Redis disabled or unreachable).
    """
    client = await get_redis()
    if not client:
        return None

    try:
        return int(await client.get(GENERATION_KEY) or 0)
    except Exception as e:
        logger.error("stall_cache_generation_failed", error=str(e))
        return None


async def get_cached_stalls(
    generation: Optional[int], status: Optional[str], size: Optional[str]
) -> Optional[dict]:
    """Retrieve cached stall list response."""
    client = await get_redis()
    if not client or generation is None:
        return None

    key = _make_stall_list_key(generation, status, size)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("stall_cache_hit", key=key)
            return json.loads(data)
        logger.debug("stall_cache_miss", key=key)
    except Exception as e:
        logger.error("stall_cache_read_failed", key=key, error=str(e))

    return None


async def set_cached_stalls(
    generation: Optional[int], status: Optional[str], size: Optional[str], data: dict
) -> None:
    """Cache stall list response with TTL under the generation it was read in."""
    client = await get_redis()
    if not client or generation is None:
        return

    key = _make_stall_list_key(generation, status, size)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("stall_cache_stored", key=key, count=data.get("count"), ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("stall_cache_write_failed", key=key, error=str(e))


async def invalidate_stall_cache() -> int:
    """
    Retire the current listing generation and drop every cached listing.

    Returns how many keys went. Keys are collected with SCAN (never KEYS,
    which blocks Redis) and removed in one UNLINK per batch so a busy floor
    plan does not stall the booking request that triggered the invalidation.
    """
    client = await get_redis()
    if not client:
        return 0

    deleted = 0
    batch: list[str] = []
    try:
        generation = await client.incr(GENERATION_KEY)
        async for key in client.scan_iter(match=f"{LIST_KEY_PREFIX}*", count=100):
            batch.append(key)
            if len(batch) >= INVALIDATION_BATCH:
                deleted += await client.unlink(*batch)
                batch.clear()
        if batch:
            deleted += await client.unlink(*batch)
        record_cache_operation("invalidate", hit=deleted > 0)
        logger.info("stall_cache_invalidated", keys_deleted=deleted, generation=generation)
    except Exception as e:
        logger.error("stall_cache_invalidation_failed", error=str(e))
    return deleted


async def get_cache_stats() -> dict:
    """Keyspace hit rate for the /health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            "listing_ttl_seconds": settings.REDIS_CACHE_TTL,
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
