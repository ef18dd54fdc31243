"""Redis connection for the cache invalidation channel.

Mailflow only publishes: each mutation emits small JSON messages on
CACHE_CHANNEL for read-side caches to drop stale entries. Redis is optional;
an empty REDIS_URL or ``memory://`` turns publishing off.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import redis

from mailflow.core.config import settings

REDIS_DISABLED_URL = "memory://"
CONNECT_TIMEOUT_SECONDS = 2.0

_client: redis.Redis | None = None


def redis_url(url: str | None = None) -> str | None:
    """Configured redis URL, or None when cache publishing is disabled."""
    value = (settings.REDIS_URL if url is None else url).strip()
    if not value or value.lower() == REDIS_DISABLED_URL:
        return None
    return value


def connect(url: str, max_connections: int | None = None) -> redis.Redis:
    pool = redis.ConnectionPool.from_url(
        url,
        max_connections=max_connections or settings.REDIS_MAX_CONNECTIONS,
        socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
        socket_timeout=CONNECT_TIMEOUT_SECONDS,
        retry_on_timeout=True,
    )
    return redis.Redis(connection_pool=pool)


def get_cache_client() -> redis.Redis | None:
    """Shared client for the cache channel, created on first use."""
    global _client
    url = redis_url()
    if url is None:
        return None
    if _client is None:
        _client = connect(url)
    return _client


def publish_cache_tag(client: redis.Redis, tag: str, channel: str | None = None) -> int:
    """Publish one invalidated tag; returns the number of subscribers reached."""
    message = json.dumps({"tag": tag, "at": datetime.now(timezone.utc).isoformat()})
    return client.publish(channel or settings.CACHE_CHANNEL, message)
