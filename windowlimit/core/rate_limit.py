"""Rate limiting wiring for FastAPI.

Holds the process-wide store and limiter, and exposes ``enforce_rate_limit``
as a route dependency.

Strategy:
- One sliding-window budget per API key.
- If the API key header is missing, fall back to the client IP.
- Store errors propagate to the exception handlers (no fail open).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from windowlimit.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.adapters.store.factory import create_script_store
from windowlimit.core.config import settings
from windowlimit.core.logging import hash_key

logger = logging.getLogger(__name__)


_store: AbstractScriptStore | None = None
_limiter: SlidingWindowRateLimiter | None = None
_limiter_config: tuple[int, int, int, int, str] | None = None


def get_script_store() -> AbstractScriptStore:
    """Return the process-wide script store, creating it on first use."""

    global _store

    if _store is None:
        _store = create_script_store(settings.redis)
    return _store


async def close_script_store() -> None:
    """Close the process-wide store and forget the limiter built on it."""

    global _store, _limiter, _limiter_config

    if _store is not None:
        await _store.close()
    _store = None
    _limiter = None
    _limiter_config = None


def get_rate_limiter() -> SlidingWindowRateLimiter:
    """Return a process-wide rate limiter instance.

    If the rate limit settings change (primarily in tests), the limiter is
    rebuilt on the same store.

    Returns:
        SlidingWindowRateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    cfg = settings.rate_limit
    config = (
        cfg.threshold,
        cfg.window_seconds,
        cfg.bucket_precision_seconds,
        cfg.stale_bucket_age_seconds,
        cfg.key_prefix,
    )

    if _limiter is None or _limiter_config != config:
        _limiter = SlidingWindowRateLimiter(
            get_script_store(),
            cfg.threshold,
            bucket_precision=cfg.bucket_precision_seconds,
            window_size=cfg.window_seconds,
            stale_bucket_age=cfg.stale_bucket_age_seconds,
            key_prefix=cfg.key_prefix,
        )
        _limiter_config = config

    return _limiter


def _build_rate_limit_key(request: Request, x_api_key: str | None) -> str:
    if x_api_key:
        return f"api_key:{x_api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


async def enforce_rate_limit(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency enforcing the sliding-window limit.

    Admits one event for the requester. When the window is full, raises
    HTTP 429.

    Raises:
        HTTPException: 429 Too Many Requests when the limit is exceeded.
    """

    cfg = settings.rate_limit
    if not cfg.enabled:
        return

    limiter = get_rate_limiter()
    key = _build_rate_limit_key(request, x_api_key)

    if await limiter.allow(key, timeout=cfg.request_timeout_seconds):
        return

    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": "api_key" if x_api_key else "ip",
            "key_hash": hash_key(key),
            "limit": limiter.config.threshold,
            "window_s": limiter.config.window_size_seconds,
        },
    )

    headers: dict[str, str] = {}
    if cfg.include_headers:
        headers["X-RateLimit-Limit"] = str(limiter.config.threshold)
        headers["X-RateLimit-Window"] = str(int(limiter.config.window_size_seconds))

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded. Try again later.",
        headers=headers or None,
    )
