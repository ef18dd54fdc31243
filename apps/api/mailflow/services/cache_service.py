"""Cache invalidation signals for flow and queue read views."""

import logging
from typing import Protocol
from uuid import UUID

from mailflow.core.config import settings
from mailflow.core.redis_client import get_cache_client, publish_cache_tag

logger = logging.getLogger(__name__)

FLOWS_TAG = "automations"
QUEUE_TAG = "automation-queue"


def flow_tag(flow_id: UUID | str) -> str:
    return f"automation:{flow_id}"


class CacheInvalidator(Protocol):
    def invalidate(self, tag: str) -> None: ...


class NullCacheInvalidator:
    """Used when redis is disabled."""

    def invalidate(self, tag: str) -> None:
        logger.debug("Cache invalidation skipped (redis disabled) tag=%s", tag)


class RedisCacheInvalidator:
    """Publish invalidated tags on a pub/sub channel; never raises."""

    def __init__(self, client, channel: str | None = None):
        self.client = client
        self.channel = channel or settings.CACHE_CHANNEL

    def invalidate(self, tag: str) -> None:
        try:
            publish_cache_tag(self.client, tag, self.channel)
        except Exception:
            logger.warning("Cache invalidation failed tag=%s", tag, exc_info=True)


def get_cache_invalidator() -> CacheInvalidator:
    client = get_cache_client()
    if client is None:
        return NullCacheInvalidator()
    return RedisCacheInvalidator(client)
