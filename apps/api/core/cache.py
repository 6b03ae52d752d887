"""
Redis JSON cache.

Only hot, rarely-changing reads go through here (the resolved offline
policy). Redis is optional: with caching disabled or Redis down every read
is a miss and every write is a no-op, so callers always have a database
fallback.
"""
import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None
_unavailable = False


def _redis() -> Optional[redis.Redis]:
    """Lazily connect once per process; after a failed connect, stay off."""
    global _client, _unavailable

    if not settings.CACHE_ENABLED or _unavailable:
        return None
    if _client is None:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"Redis unavailable, cache disabled: {e}")
            _unavailable = True
            return None
        _client = client
    return _client


def key_for(*parts: Any) -> str:
    """'site_settings', 'offline_policy' -> 'session_engine:site_settings:offline_policy'"""
    return ":".join(["session_engine"] + [str(p) for p in parts if p is not None])


def read_json(key: str) -> Optional[Any]:
    client = _redis()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except RedisError as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        return None
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Dropping undecodable cache entry {key}")
        return None


def write_json(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    client = _redis()
    if client is None:
        return False
    try:
        client.setex(key, ttl or settings.CACHE_TTL_DEFAULT, json.dumps(value, default=str))
    except RedisError as e:
        logger.warning(f"Cache write failed for {key}: {e}")
        return False
    return True
