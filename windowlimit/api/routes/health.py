from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.core.rate_limit import get_script_store
from windowlimit.schemas.admission import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: Annotated[AbstractScriptStore, Depends(get_script_store)],
) -> HealthResponse:
    """Liveness plus store reachability.

    The endpoint itself always answers 200 so load balancers can tell a
    running process from an unreachable store.
    """

    reachable = await store.ping()
    return HealthResponse(store="ok" if reachable else "unavailable")
