"""In-memory script store.

Notes:
- Per-process only: every worker keeps its own buckets, so running multiple
  workers multiplies the effective limit. Use Redis for shared limits.
- Routines run synchronously while the key's lock is held, which gives the
  same per-key atomicity Redis gives a script. Unrelated keys never contend.
- Expired keys are dropped lazily, on access.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from windowlimit.adapters.rate_limit.admission import (
    ADMISSION_SCRIPT,
    HashRecord,
    run_admission,
)
from windowlimit.adapters.store.base import AbstractScriptStore
from windowlimit.core.errors import StoreTransportAppError

Routine = Callable[[HashRecord, Sequence[Any]], Any]


@dataclass
class _HashEntry:
    fields: dict[str, str] = field(default_factory=dict)
    expires_at: float | None = None


class _KeyView:
    """``HashRecord`` bound to a single key of an ``InMemoryScriptStore``."""

    def __init__(self, store: InMemoryScriptStore, key: str) -> None:
        self._store = store
        self._key = key

    def exists(self) -> bool:
        return self._store._live_entry(self._key) is not None

    def hgetall(self) -> dict[str, str]:
        entry = self._store._live_entry(self._key)
        return dict(entry.fields) if entry else {}

    def hincrby(self, field: str, amount: int) -> int:
        entry = self._store._live_entry(self._key)
        if entry is None:
            entry = _HashEntry()
            self._store._data[self._key] = entry
        value = int(entry.fields.get(field, "0")) + amount
        entry.fields[field] = str(value)
        return value

    def hdel(self, *fields: str) -> int:
        entry = self._store._live_entry(self._key)
        if entry is None:
            return 0
        removed = 0
        for name in fields:
            if entry.fields.pop(name, None) is not None:
                removed += 1
        if not entry.fields:
            # Redis removes a hash once its last field is gone
            self._store._data.pop(self._key, None)
        return removed

    def ttl(self) -> int:
        return self._store.ttl(self._key)

    def expire(self, seconds: int) -> bool:
        return self._store.expire(self._key, seconds)


class InMemoryScriptStore(AbstractScriptStore):
    """Process-local store that runs registered Python routines atomically.

    Routines are looked up by script source, so the limiter can hand the same
    ``ADMISSION_SCRIPT`` to this store that it hands to Redis.
    """

    def __init__(
        self,
        *,
        routines: Mapping[str, Routine] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            routines: Mapping of script source to Python routine. Defaults to
                the admission routine only.
            clock: Time source function returning UNIX time in seconds.
        """
        self._routines: dict[str, Routine] = (
            dict(routines) if routines is not None else {ADMISSION_SCRIPT: run_admission}
        )
        self._clock = clock
        self._data: dict[str, _HashEntry] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def register(self, script: str, routine: Routine) -> None:
        self._routines[script] = routine

    async def eval(self, script: str, key: str, args: Sequence[Any]) -> Any:
        routine = self._routines.get(script)
        if routine is None:
            raise StoreTransportAppError(
                code="store_script_missing",
                message="No routine registered for the requested script",
            )

        with self._lock_for(key):
            return routine(_KeyView(self, key), list(args))

    def hset(self, key: str, mapping: Mapping[str, Any]) -> None:
        """Write raw fields without touching the TTL (seeding helper)."""

        with self._lock_for(key):
            entry = self._live_entry(key)
            if entry is None:
                entry = _HashEntry()
                self._data[key] = entry
            entry.fields.update({name: str(value) for name, value in mapping.items()})

    def hgetall(self, key: str) -> dict[str, str]:
        with self._lock_for(key):
            entry = self._live_entry(key)
            return dict(entry.fields) if entry else {}

    def ttl(self, key: str) -> int:
        """Remaining lifetime in whole seconds, Redis style (-2 missing, -1 none)."""

        entry = self._live_entry(key)
        if entry is None:
            return -2
        if entry.expires_at is None:
            return -1
        return max(0, round(entry.expires_at - self._clock()))

    def expire(self, key: str, seconds: int) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        if seconds <= 0:
            self._data.pop(key, None)
            return True
        entry.expires_at = self._clock() + seconds
        return True

    def flush(self) -> None:
        with self._locks_guard:
            self._data.clear()
            self._key_locks.clear()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _live_entry(self, key: str) -> _HashEntry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry
