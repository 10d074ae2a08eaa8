from __future__ import annotations

from pydantic import BaseModel, Field


class AdmissionResponse(BaseModel):
    """Outcome of one admission request."""

    key: str = Field(..., description="Rate limited subject")
    admitted: bool = Field(..., description="Whether the event was admitted")
    threshold: int = Field(..., description="Maximum admitted events per window")
    window_seconds: float = Field(..., description="Trailing window length in seconds")


class HealthResponse(BaseModel):
    status: str = "ok"
    store: str = Field(..., description="ok or unavailable")
