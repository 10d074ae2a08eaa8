from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path

from windowlimit.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from windowlimit.core.config import settings
from windowlimit.core.rate_limit import get_rate_limiter
from windowlimit.schemas.admission import AdmissionResponse

router = APIRouter(prefix="/admissions", tags=["Admissions"])


@router.post("/{key}", response_model=AdmissionResponse)
async def admit(
    key: Annotated[str, Path(min_length=1, max_length=512)],
    limiter: Annotated[SlidingWindowRateLimiter, Depends(get_rate_limiter)],
) -> AdmissionResponse:
    """Record one event for ``key`` and report whether it was admitted.

    A denied event is not counted. Store failures surface as 503 through the
    global exception handlers.
    """

    admitted = await limiter.allow(key, timeout=settings.rate_limit.request_timeout_seconds)
    return AdmissionResponse(
        key=key,
        admitted=admitted,
        threshold=limiter.config.threshold,
        window_seconds=limiter.config.window_size_seconds,
    )
