"""
Redis hot cache: short-lived copies of forecast responses.

Sits in front of the forecast API only. The durable, validity-windowed
record of every prediction is the prediction cache in
`agroforecast.storage.prediction_cache`; Redis just saves recomputing the
ensemble for repeated identical requests within a few minutes.

Every Redis failure degrades to a cache miss.

Usage:
    from agroforecast.core.cache import forecast_key, cache_get, cache_set

    key = forecast_key("Pune", 7)
    cached = await cache_get(key)
    if cached is None:
        await cache_set(key, payload)
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Optional

from agroforecast.core.config import settings

logger = logging.getLogger(__name__)

FORECAST_NAMESPACE = "forecast"

# Lazy Redis client, initialised on first use
_redis_client = None


async def _get_redis():
    """Get or create the async Redis client (None when disabled)."""
    global _redis_client
    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis client configured: %s", settings.REDIS_URL)
        except Exception as e:
            logger.warning("Redis unavailable: %s; hot cache disabled", e)
            return None
    return _redis_client


def forecast_key(location: str, horizon_days: int, model_version: str = "") -> str:
    """Deterministic key for one (location, horizon) forecast."""
    raw = json.dumps(
        {"l": location.strip().lower(), "h": horizon_days,
         "v": model_version or settings.MODEL_VERSION},
        sort_keys=True,
    )
    digest = hashlib.md5(raw.encode()).hexdigest()[:12]
    return f"{FORECAST_NAMESPACE}:{digest}"


async def cache_get(key: str) -> Optional[Any]:
    """Get a cached value by key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            logger.debug("Cache HIT: %s", key)
            return json.loads(raw)
    except Exception as e:
        logger.warning("Cache GET error for %s: %s", key, e)
    return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Set a cached value with TTL (seconds)."""
    client = await _get_redis()
    if not client:
        return False
    try:
        serialised = json.dumps(value, default=str)
        await client.set(key, serialised, ex=ttl or settings.REDIS_FORECAST_TTL)
        return True
    except Exception as e:
        logger.warning("Cache SET error for %s: %s", key, e)
        return False


async def cache_clear_prefix(prefix: str) -> int:
    """Delete all keys under a namespace, e.g. after retraining."""
    client = await _get_redis()
    if not client:
        return 0
    try:
        keys = [key async for key in client.scan_iter(f"{prefix}*")]
        if keys:
            await client.delete(*keys)
        return len(keys)
    except Exception as e:
        logger.warning("Cache CLEAR error for %s*: %s", prefix, e)
        return 0


async def ping_redis() -> bool:
    client = await _get_redis()
    if not client:
        return False
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
