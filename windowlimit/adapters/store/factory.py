"""Factory for the script store backing the rate limiter."""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis, RedisCluster

from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.adapters.store.in_memory import InMemoryScriptStore
from windowlimit.adapters.store.redis_store import RedisScriptStore
from windowlimit.core.config import RedisSettings, settings

logger = logging.getLogger(__name__)


def create_script_store(redis_settings: RedisSettings | None = None) -> AbstractScriptStore:
    """Build the store described by the Redis settings.

    Falls back to a process-local in-memory store when no Redis URL is
    configured. That keeps local development working but limits are then
    enforced per process only.

    Args:
        redis_settings: Optional settings; defaults to the global settings.

    Returns:
        AbstractScriptStore: Configured store instance.
    """
    cfg = redis_settings or settings.redis

    if not cfg.url:
        logger.warning(
            "store.in_memory_fallback",
            extra={"reason": "REDIS_URL is not set"},
        )
        return InMemoryScriptStore()

    options: dict[str, Any] = {"socket_timeout": cfg.socket_timeout_seconds}
    if cfg.max_connections:
        options["max_connections"] = cfg.max_connections

    if cfg.cluster:
        client: Redis | RedisCluster = RedisCluster.from_url(cfg.url, **options)
    else:
        client = Redis.from_url(cfg.url, **options)

    logger.info("store.redis_configured", extra={"cluster": cfg.cluster})
    return RedisScriptStore(client)
