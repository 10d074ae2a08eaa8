"""Rate limiter interface.

The API layer depends on this abstraction rather than on a concrete limiter
or store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def allow(self, key: str, *, timeout: float | None = None) -> bool:
        """Decide whether the current event for ``key`` is admitted.

        Args:
            key: Subject being limited (e.g., API key, IP address).
            timeout: Optional deadline in seconds for the store round trip.

        Returns:
            True when admitted, False when denied.
        """
        raise NotImplementedError
