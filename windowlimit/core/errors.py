"""Application-level exception types.

Every failure surfaced by the rate limiter is an ``AppError`` subclass, so
callers and HTTP handlers can branch on a stable ``code`` instead of parsing
messages. No error is swallowed or retried internally: callers decide whether
an error means "fail open" or "fail closed".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    result_code: int
    result_type: str
    window_length: int
    threshold: int
    timeout_seconds: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when caller input (e.g. an empty key) is rejected."""


class ConfigurationAppError(AppError):
    """Raised for an invalid threshold or a negative window length."""


class ArgumentAppError(AppError):
    """Raised when the admission routine rejects its positional arguments.

    This signals a contract mismatch between client and routine, not a
    condition end users can fix.
    """


class StoreTransportAppError(AppError):
    """Raised when the store cannot be reached or fails to run the routine.

    A timeout lands here too. The routine may or may not have committed.
    """


class ResultTypeAppError(AppError, TypeError):
    """Raised when the store reply cannot be read as an admission code."""
