"""Sliding-window admission control over an atomic key-value store routine."""

from windowlimit.adapters.rate_limit.sliding_window import LimiterConfig, SlidingWindowRateLimiter
from windowlimit.adapters.store.in_memory import InMemoryScriptStore
from windowlimit.adapters.store.redis_store import RedisScriptStore

__all__ = [
    "InMemoryScriptStore",
    "LimiterConfig",
    "RedisScriptStore",
    "SlidingWindowRateLimiter",
]
