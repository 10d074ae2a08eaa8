"""Store capability consumed by the rate limiter.

The limiter never reads or writes bucket contents itself. It only asks a
store to run a named routine atomically against one key and hands back the
reply. Anything that can provide single-key atomic execution (Redis scripts,
an in-process store with per-key locks) can back the limiter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence


class AbstractScriptStore(ABC):
    """Interface for stores that execute routines atomically per key."""

    @abstractmethod
    async def eval(self, script: str, key: str, args: Sequence[Any]) -> Any:
        """Run ``script`` against ``key`` as one indivisible unit.

        Args:
            script: Routine source; also serves as the routine identifier.
            key: The only key the routine may touch.
            args: Positional routine arguments.

        Returns:
            The raw routine reply.

        Raises:
            StoreTransportAppError: If the store cannot be reached or the
                routine fails to execute.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
