# common/cache.py
import json
import logging
import os
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

HALLS_CATALOG_KEY = "halls:catalog"
AVAILABILITY_PREFIX = "halls:availability:"

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Return a Redis client if REDIS_URL is configured, otherwise None.

    Caching is optional: when Redis is not configured or not reachable
    every helper below becomes a no-op.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable at %s, caching disabled: %s", redis_url, exc)
        return None

    _redis_client = client
    return _redis_client


def get_cached_json(key: str) -> Optional[Any]:
    """Cached value for ``key``; a cache outage reads as a miss."""
    client = get_redis_client()
    if client is None:
        return None

    try:
        raw = client.get(key)
    except redis.RedisError as exc:
        logger.warning("Cache read of %s failed: %s", key, exc)
        return None
    return json.loads(raw) if raw is not None else None


def set_cached_json(key: str, value: Any, ttl_seconds: int = 60) -> None:
    client = get_redis_client()
    if client is None:
        return

    try:
        client.setex(key, ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError as exc:
        logger.warning("Cache write of %s failed: %s", key, exc)


def delete_prefix(prefix: str) -> None:
    """
    Drop every cached key under ``prefix``.

    Called after a write has committed, so a cache outage is logged and
    the stale keys are left to expire on their TTL.
    """
    client = get_redis_client()
    if client is None:
        return

    try:
        for key in client.scan_iter(prefix + "*"):
            client.delete(key)
    except redis.RedisError as exc:
        logger.warning("Cache invalidation of %s* failed: %s", prefix, exc)


def invalidate_availability(resource_id: str) -> None:
    delete_prefix(availability_key(resource_id))


def availability_key(resource_id: str, *parts: object) -> str:
    """
    Cache key for availability listings of one hall.
    Invalidating with no parts clears every listing of that hall.
    """
    return f"{AVAILABILITY_PREFIX}{resource_id}:" + ":".join(str(p) for p in parts)
