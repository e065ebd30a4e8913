# apps/recengine/cache.py
import logging
from typing import Callable, Optional

import redis
from config import settings

log = logging.getLogger("cache")

redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)


def healthcheck() -> bool:
    return bool(redis_client.ping())


def _version_key(namespace: str) -> str:
    return f"{namespace}:version"


def _value_key(namespace: str, version: str) -> str:
    return f"{namespace}:value:{version}"


def read_through_int(
    namespace: str, loader: Callable[[], int], ttl_seconds: Optional[int] = None
) -> int:
    """Versioned read-through snapshot. Redis errors fall back to the loader."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.genre_cache_ttl_seconds
    try:
        version = redis_client.get(_version_key(namespace)) or "0"
        cached = redis_client.get(_value_key(namespace, version))
        if cached is not None:
            return int(cached)
    except (redis.RedisError, ValueError) as exc:
        log.warning("cache_read_failed namespace=%s", namespace, exc_info=exc)
        return loader()

    value = loader()
    try:
        redis_client.set(_value_key(namespace, version), str(value), ex=ttl)
    except redis.RedisError as exc:
        log.warning("cache_write_failed namespace=%s", namespace, exc_info=exc)
    return value


def invalidate(namespace: str) -> None:
    try:
        redis_client.incr(_version_key(namespace))
    except redis.RedisError as exc:
        log.warning("cache_invalidate_failed namespace=%s", namespace, exc_info=exc)
