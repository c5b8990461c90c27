"""
Redis caching utilities for the Inventory service.

Caches read-heavy views (location tree, low stock alerts). Any cache failure
is treated as a miss so redis outages never break a request.
"""
import json
import logging
from typing import Any, Optional
import redis

from .config import REDIS_URL, CACHE_ENABLED

logger = logging.getLogger(__name__)

redis_client = redis.from_url(REDIS_URL, decode_responses=True) if CACHE_ENABLED else None

# Cache TTLs (in seconds)
HIERARCHY_CACHE_TTL = 120  # 2 minutes
LOW_STOCK_CACHE_TTL = 60  # 1 minute

HIERARCHY_KEY = "locations:hierarchy"


def low_stock_key(threshold: int) -> str:
    return f"items:low_stock:{threshold}"


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found (or cache unavailable)
    """
    if redis_client is None:
        return None
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except redis.RedisError as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: Value to cache (JSON serialized; decimals and dates become strings)
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    if redis_client is None:
        return False
    try:
        redis_client.setex(key, ttl, json.dumps(value, default=str))
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error for {key}: {e}")
        return False


def delete_cache(key: str) -> bool:
    """
    Delete a key from Redis cache.

    Args:
        key: Cache key to delete

    Returns:
        True if successful, False otherwise
    """
    if redis_client is None:
        return False
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for {key}: {e}")
        return False


def delete_pattern(pattern: str) -> bool:
    """
    Delete all keys matching a pattern.

    Args:
        pattern: Pattern to match (e.g., "items:*")

    Returns:
        True if successful, False otherwise
    """
    if redis_client is None:
        return False
    try:
        keys = list(redis_client.scan_iter(match=pattern))
        if keys:
            redis_client.delete(*keys)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete pattern error for {pattern}: {e}")
        return False


def invalidate_inventory() -> None:
    """Drop every cached view derived from items or locations."""
    delete_pattern("items:*")
    delete_pattern("locations:*")
