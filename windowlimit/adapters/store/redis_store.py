"""Redis-backed script store.

Scripts run through EVALSHA (loaded on first NOSCRIPT) and always receive
exactly one key, so every invocation maps to a single hash slot and stays
valid on Redis Cluster.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from redis.asyncio import Redis, RedisCluster
from redis.commands.core import AsyncScript
from redis.exceptions import RedisError

from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.core.errors import StoreTransportAppError

logger = logging.getLogger(__name__)


class RedisScriptStore(AbstractScriptStore):
    """Store adapter over ``redis.asyncio`` (standalone or cluster client)."""

    def __init__(self, client: Redis | RedisCluster) -> None:
        self.client = client
        self._scripts: dict[str, AsyncScript] = {}

    def _script(self, source: str) -> AsyncScript:
        script = self._scripts.get(source)
        if script is None:
            script = self.client.register_script(source)
            self._scripts[source] = script
        return script

    async def eval(self, script: str, key: str, args: Sequence[Any]) -> Any:
        try:
            return await self._script(script)(keys=[key], args=list(args))
        except (RedisError, OSError) as exc:
            raise StoreTransportAppError(
                code="store_unavailable",
                message=f"Redis error: {exc}",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as exc:
            logger.warning(
                "store.ping_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return False

    async def close(self) -> None:
        await self.client.aclose()
