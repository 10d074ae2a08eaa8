"""Tests for the admission routine as executed by the in-memory store."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from windowlimit.adapters.rate_limit.admission import (
    ADMISSION_SCRIPT,
    AdmissionCode,
    bucket_field,
    parse_bucket_field,
)
from windowlimit.adapters.store.in_memory import InMemoryScriptStore
from windowlimit.core.window import compute_window, truncate

from conftest import NOW, FakeClock

MINUTE = 60
QUARTER_HOUR = 15 * 60
HOUR = 60 * 60


def _args(
    *,
    now: float = NOW,
    window: int = 5 * MINUTE,
    precision: int = MINUTE,
    stale: int = HOUR,
    threshold: int = 7,
) -> list[int]:
    bounds = compute_window(now, window, precision)
    return [int(now), bounds.start, bounds.end, precision, stale, threshold]


def _bucket(periods_ago: int, precision: int) -> str:
    return bucket_field(truncate(NOW - periods_ago * precision, precision), precision)


async def _run(store: InMemoryScriptStore, key: str = "foo", **kwargs) -> int:
    return await store.eval(ADMISSION_SCRIPT, key, _args(**kwargs))


class TestBucketFields:
    def test_field_layout(self) -> None:
        assert bucket_field(1664832840, 60) == "1664832840:60"
        assert bucket_field(1664832840.0, 60.0) == "1664832840:60"

    @pytest.mark.parametrize("field", ["garbage", "abc:60", "1664832840:", ":60", "1664832840:xyz"])
    def test_malformed_fields_do_not_parse(self, field: str) -> None:
        assert parse_bucket_field(field) is None

    def test_parse_round_trips_layout(self) -> None:
        assert parse_bucket_field("1664832840:900") == (1664832840, 900)


class TestAdmission:
    @pytest.mark.asyncio
    async def test_first_call_creates_bucket_and_admits(self, store: InMemoryScriptStore) -> None:
        result = await _run(store)

        assert result == AdmissionCode.ADMIT
        assert store.hgetall("foo") == {"1664832840:60": "1"}
        assert store.ttl("foo") == 5 * MINUTE

    @pytest.mark.asyncio
    async def test_second_call_increments_same_bucket(self, store: InMemoryScriptStore) -> None:
        await _run(store)
        result = await _run(store)

        assert result == AdmissionCode.ADMIT
        assert store.hgetall("foo") == {"1664832840:60": "2"}
        assert store.ttl("foo") > 0

    @pytest.mark.asyncio
    async def test_denies_after_threshold_without_increment(self, store: InMemoryScriptStore) -> None:
        results = [await _run(store, threshold=3) for _ in range(3)]
        before = store.hgetall("foo")

        denied = await _run(store, threshold=3)

        assert results == [AdmissionCode.ADMIT] * 3
        assert denied == AdmissionCode.DENY
        assert store.hgetall("foo") == before == {"1664832840:60": "3"}

    @pytest.mark.asyncio
    async def test_denied_call_still_prunes(self, store: InMemoryScriptStore) -> None:
        store.hset("foo", {"1664832840:60": 5, "garbage": 1})

        result = await _run(store, threshold=3)

        assert result == AdmissionCode.DENY
        assert store.hgetall("foo") == {"1664832840:60": "5"}

    @pytest.mark.asyncio
    async def test_prunes_and_counts_mixed_precisions(self, store: InMemoryScriptStore) -> None:
        store.hset(
            "foo",
            {
                # outside the window: pruned
                _bucket(5, MINUTE): 2,
                # 75 minutes old, beyond the stale age: pruned despite its precision
                _bucket(5, QUARTER_HOUR): 2,
                # other precision, not stale: kept, not counted
                _bucket(1, QUARTER_HOUR): 2,
                _bucket(4, MINUTE): 2,
                _bucket(1, MINUTE): 2,
                _bucket(0, MINUTE): 2,
            },
        )

        result = await _run(store, threshold=7)

        assert result == AdmissionCode.ADMIT
        buckets = store.hgetall("foo")
        assert len(buckets) == 4
        assert _bucket(5, MINUTE) not in buckets
        assert _bucket(5, QUARTER_HOUR) not in buckets
        assert buckets[_bucket(1, QUARTER_HOUR)] == "2"
        assert buckets[_bucket(0, MINUTE)] == "3"
        assert store.ttl("foo") == 5 * MINUTE

    @pytest.mark.asyncio
    async def test_same_seed_denies_when_total_exceeds_threshold(self, store: InMemoryScriptStore) -> None:
        store.hset("foo", {_bucket(4, MINUTE): 2, _bucket(1, MINUTE): 2, _bucket(0, MINUTE): 2})

        result = await _run(store, threshold=6)

        assert result == AdmissionCode.DENY
        assert store.hgetall("foo")[_bucket(0, MINUTE)] == "2"

    @pytest.mark.asyncio
    async def test_buckets_after_window_end_are_kept_but_not_counted(
        self, store: InMemoryScriptStore
    ) -> None:
        future = bucket_field(1664832840 + MINUTE, MINUTE)
        store.hset("foo", {future: 10})

        result = await _run(store, threshold=1)

        assert result == AdmissionCode.ADMIT
        assert store.hgetall("foo")[future] == "10"

    @pytest.mark.asyncio
    async def test_other_precisions_are_preserved(self, store: InMemoryScriptStore) -> None:
        other = _bucket(0, QUARTER_HOUR)
        store.hset("foo", {other: 50})

        result = await _run(store, threshold=1)

        assert result == AdmissionCode.ADMIT
        assert store.hgetall("foo") == {other: "50", "1664832840:60": "1"}

    @pytest.mark.asyncio
    async def test_malformed_buckets_are_deleted_and_not_counted(
        self, store: InMemoryScriptStore
    ) -> None:
        store.hset(
            "foo",
            {
                "garbage": 100,
                "abc:60": 100,
                "1664832840:xyz": 100,
                "1664832780:60": "nope",
                "1664832720:60": 0,
            },
        )

        result = await _run(store, threshold=1)

        assert result == AdmissionCode.ADMIT
        assert store.hgetall("foo") == {"1664832840:60": "1"}

    @pytest.mark.asyncio
    async def test_ttl_is_never_decreased(self, store: InMemoryScriptStore) -> None:
        await _run(store)
        store.expire("foo", 1000)

        await _run(store)

        assert store.ttl("foo") == 1000

    @pytest.mark.asyncio
    async def test_ttl_is_raised_to_window_length(self, store: InMemoryScriptStore) -> None:
        await _run(store)
        store.expire("foo", 10)

        await _run(store)

        assert store.ttl("foo") == 5 * MINUTE

    @pytest.mark.asyncio
    async def test_key_without_ttl_gets_one(self, store: InMemoryScriptStore) -> None:
        store.hset("foo", {_bucket(0, MINUTE): 1})
        assert store.ttl("foo") == -1

        await _run(store)

        assert store.ttl("foo") == 5 * MINUTE

    @pytest.mark.asyncio
    async def test_key_expires_after_idle_window(
        self, store: InMemoryScriptStore, clock: FakeClock
    ) -> None:
        assert await _run(store, threshold=1) == AdmissionCode.ADMIT
        assert await _run(store, threshold=1) == AdmissionCode.DENY

        clock.advance(5 * MINUTE)

        assert store.hgetall("foo") == {}
        assert await _run(store, now=clock(), threshold=1) == AdmissionCode.ADMIT

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self, store: InMemoryScriptStore) -> None:
        assert await _run(store, "k1", threshold=1) == AdmissionCode.ADMIT
        assert await _run(store, "k1", threshold=1) == AdmissionCode.DENY

        assert await _run(store, "k2", threshold=1) == AdmissionCode.ADMIT


class TestValidation:
    @pytest.mark.asyncio
    async def test_negative_window_returns_window_invalid_without_mutation(
        self, store: InMemoryScriptStore
    ) -> None:
        store.hset("foo", {"garbage": 1})
        args = [int(NOW), 1664832840, 1664832780, MINUTE, HOUR, 5]

        result = await store.eval(ADMISSION_SCRIPT, "foo", args)

        assert result == AdmissionCode.WINDOW_INVALID
        assert store.hgetall("foo") == {"garbage": "1"}
        assert store.ttl("foo") == -1

    @pytest.mark.asyncio
    async def test_negative_window_on_empty_key_creates_nothing(
        self, store: InMemoryScriptStore
    ) -> None:
        args = [int(NOW), 1664832840, 1664832780, MINUTE, HOUR, 5]

        assert await store.eval(ADMISSION_SCRIPT, "foo", args) == AdmissionCode.WINDOW_INVALID
        assert store.ttl("foo") == -2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [0, -1])
    async def test_non_positive_threshold(self, store: InMemoryScriptStore, threshold: int) -> None:
        result = await _run(store, threshold=threshold)

        assert result == AdmissionCode.THRESHOLD_INVALID
        assert store.ttl("foo") == -2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "args",
        [
            [],
            [int(NOW), 1664832540, 1664832840, 60, 3600],
            [int(NOW), "start", 1664832840, 60, 3600, 5],
            [int(NOW), 1664832540, None, 60, 3600, 5],
            [int(NOW), 1664832540, 1664832840, True, 3600, 5],
        ],
    )
    async def test_missing_or_non_numeric_args(self, store: InMemoryScriptStore, args: list) -> None:
        result = await store.eval(ADMISSION_SCRIPT, "foo", args)

        assert result == AdmissionCode.ARGS_INVALID
        assert store.ttl("foo") == -2

    @pytest.mark.asyncio
    async def test_numeric_strings_are_accepted(self, store: InMemoryScriptStore) -> None:
        args = [str(value) for value in _args()]

        assert await store.eval(ADMISSION_SCRIPT, "foo", args) == AdmissionCode.ADMIT
        assert store.hgetall("foo") == {"1664832840:60": "1"}


def test_concurrent_calls_never_exceed_threshold() -> None:
    store = InMemoryScriptStore(clock=FakeClock())
    threshold = 5

    def _call(_: int) -> int:
        return asyncio.run(store.eval(ADMISSION_SCRIPT, "foo", _args(threshold=threshold)))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_call, range(40)))

    assert results.count(AdmissionCode.ADMIT) == threshold
    assert results.count(AdmissionCode.DENY) == 40 - threshold
    assert store.hgetall("foo") == {"1664832840:60": str(threshold)}
