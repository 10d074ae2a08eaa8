"""Sliding-window rate limiter backed by an atomic store routine.

Every ``allow`` call is one round trip: the client computes the window
boundaries, the store runs the admission routine against the key and the
numeric reply is translated into a decision or a typed error.

Quirks worth knowing:
- One key holds buckets of every precision it was ever used with. Buckets of
  other precisions are neither counted nor pruned, except by stale age.
- Limiters sharing a key and a precision but using different window sizes
  prune each other's buckets, which skews both counts.
- A retry after a timeout may add an extra event: the routine can commit even
  when the reply is lost.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import timedelta
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from windowlimit.adapters.rate_limit.admission import ADMISSION_SCRIPT, AdmissionCode
from windowlimit.adapters.rate_limit.base import AbstractRateLimiter
from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.core.errors import (
    ArgumentAppError,
    ConfigurationAppError,
    ResultTypeAppError,
    StoreTransportAppError,
    ValidationAppError,
)
from windowlimit.core.logging import hash_key
from windowlimit.core.window import Window, compute_window

logger = logging.getLogger(__name__)

ONE_SECOND = timedelta(seconds=1)
ONE_HOUR = timedelta(hours=1)

DEFAULT_BUCKET_PRECISION = timedelta(minutes=1)
DEFAULT_WINDOW_SIZE = timedelta(minutes=1)
DEFAULT_STALE_BUCKET_AGE = timedelta(hours=1)
# Substituted when an explicit stale age is not positive
FALLBACK_STALE_BUCKET_AGE = timedelta(hours=12)


def _log_defaulted(option: str, value: timedelta, default: timedelta) -> None:
    logger.warning(
        "rate_limit.config_defaulted",
        extra={
            "option": option,
            "invalid_s": value.total_seconds(),
            "default_s": default.total_seconds(),
        },
    )


class LimiterConfig(BaseModel):
    """Immutable limiter settings, normalized once at construction.

    Invalid durations are replaced by defaults (with a warning log) instead of
    failing construction. The threshold is the exception: it must be > 0.
    Numbers are read as seconds.
    """

    model_config = ConfigDict(frozen=True)

    threshold: int = Field(..., gt=0)
    bucket_precision: timedelta = DEFAULT_BUCKET_PRECISION
    window_size: timedelta = DEFAULT_WINDOW_SIZE
    stale_bucket_age: timedelta = DEFAULT_STALE_BUCKET_AGE

    @field_validator("bucket_precision")
    @classmethod
    def _normalize_bucket_precision(cls, value: timedelta) -> timedelta:
        # Whole seconds only: bucket fields are keyed by integer timestamps.
        if (
            value >= ONE_SECOND
            and value % ONE_SECOND == timedelta(0)
            and ONE_HOUR % value == timedelta(0)
        ):
            return value
        _log_defaulted("bucket_precision", value, DEFAULT_BUCKET_PRECISION)
        return DEFAULT_BUCKET_PRECISION

    @field_validator("window_size")
    @classmethod
    def _normalize_window_size(cls, value: timedelta) -> timedelta:
        if value >= ONE_SECOND:
            return value
        _log_defaulted("window_size", value, DEFAULT_WINDOW_SIZE)
        return DEFAULT_WINDOW_SIZE

    @field_validator("stale_bucket_age")
    @classmethod
    def _normalize_stale_bucket_age(cls, value: timedelta) -> timedelta:
        if value > timedelta(0):
            return value
        _log_defaulted("stale_bucket_age", value, FALLBACK_STALE_BUCKET_AGE)
        return FALLBACK_STALE_BUCKET_AGE

    @property
    def bucket_precision_seconds(self) -> int:
        return int(self.bucket_precision.total_seconds())

    @property
    def window_size_seconds(self) -> float:
        return self.window_size.total_seconds()

    @property
    def stale_bucket_age_seconds(self) -> int:
        return math.ceil(self.stale_bucket_age.total_seconds())


class SlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a sliding window of fixed-width buckets.

    The limiter holds no bucket state. All reads and writes happen inside the
    admission routine, which the store executes atomically per key, so any
    number of processes can share one Redis deployment.
    """

    def __init__(
        self,
        store: AbstractScriptStore,
        threshold: int,
        *,
        bucket_precision: timedelta | float = DEFAULT_BUCKET_PRECISION,
        window_size: timedelta | float = DEFAULT_WINDOW_SIZE,
        stale_bucket_age: timedelta | float = DEFAULT_STALE_BUCKET_AGE,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Store that executes the admission routine.
            threshold: Maximum admitted events per window; must be > 0.
            bucket_precision: Bucket width; must divide one hour evenly and
                be at least one whole second, else 1 minute is used.
            window_size: Lookback duration; at least 1 second, else 1 minute.
            stale_bucket_age: Absolute maximum bucket age; must be positive,
                else 12 hours is used.
            key_prefix: Namespace prepended to every key in the store.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ConfigurationAppError: If the threshold is not a positive integer.
        """
        try:
            self._config = LimiterConfig(
                threshold=threshold,
                bucket_precision=bucket_precision,
                window_size=window_size,
                stale_bucket_age=stale_bucket_age,
            )
        except ValidationError as exc:
            raise ConfigurationAppError(
                code="rate_limit_config_invalid",
                message="threshold must be an integer greater than 0",
                details={"hint": str(exc.errors(include_url=False))},
            ) from exc

        self._store = store
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def config(self) -> LimiterConfig:
        return self._config

    def _build_args(self, now: float, window: Window) -> list[Any]:
        return [
            int(now),
            window.start,
            window.end,
            self._config.bucket_precision_seconds,
            self._config.stale_bucket_age_seconds,
            self._config.threshold,
        ]

    async def allow(self, key: str, *, timeout: float | None = None) -> bool:
        """Admit or deny one event for ``key``.

        Args:
            key: Subject being limited.
            timeout: Optional deadline in seconds for the store round trip.

        Returns:
            True when admitted, False when denied.

        Raises:
            ValidationAppError: If key is empty.
            StoreTransportAppError: If the store fails or the deadline passes.
            ConfigurationAppError: If the routine rejects threshold or window.
            ArgumentAppError: If the routine rejects its arguments.
            ResultTypeAppError: If the reply is not a known admission code.
        """
        if not key:
            raise ValidationAppError(
                code="rate_limit_key_empty",
                message="key must be a non-empty string",
            )

        now = self._clock()
        window = compute_window(
            now,
            self._config.window_size_seconds,
            self._config.bucket_precision_seconds,
        )
        store_key = f"{self._key_prefix}{key}"
        call = self._store.eval(ADMISSION_SCRIPT, store_key, self._build_args(now, window))

        try:
            if timeout is None:
                result = await call
            else:
                result = await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "rate_limit.store_timeout",
                extra={"key_hash": hash_key(key), "timeout_s": timeout},
            )
            raise StoreTransportAppError(
                code="store_timeout",
                message=f"Admission routine did not answer within {timeout} seconds",
                details={"timeout_seconds": timeout},
            ) from exc
        except StoreTransportAppError as exc:
            logger.error(
                "rate_limit.store_error",
                extra={"key_hash": hash_key(key), "error_code": exc.code},
            )
            raise

        return self._interpret(result, key, window)

    def _interpret(self, result: Any, key: str, window: Window) -> bool:
        if isinstance(result, bool) or not isinstance(result, int):
            raise ResultTypeAppError(
                code="store_result_type",
                message=f"could not convert {type(result).__name__} to an admission code",
                details={"result_type": type(result).__name__},
            )

        if result == AdmissionCode.THRESHOLD_INVALID:
            raise ConfigurationAppError(
                code="rate_limit_threshold_invalid",
                message="threshold must be an integer greater than 0",
                details={"threshold": self._config.threshold},
            )
        if result == AdmissionCode.WINDOW_INVALID:
            raise ConfigurationAppError(
                code="rate_limit_window_invalid",
                message=f"window length is negative: {window.length} seconds",
                details={"window_length": window.length},
            )
        if result == AdmissionCode.ARGS_INVALID:
            raise ArgumentAppError(
                code="rate_limit_args_invalid",
                message="invalid arguments provided to the admission routine",
            )

        if result == AdmissionCode.ADMIT:
            logger.debug("rate_limit.allowed", extra={"key_hash": hash_key(key)})
            return True
        if result == AdmissionCode.DENY:
            logger.info(
                "rate_limit.denied",
                extra={
                    "key_hash": hash_key(key),
                    "limit": self._config.threshold,
                    "window_s": self._config.window_size_seconds,
                },
            )
            return False

        raise ResultTypeAppError(
            code="store_result_unknown",
            message=f"unexpected admission code: {result}",
            details={"result_code": result},
        )
