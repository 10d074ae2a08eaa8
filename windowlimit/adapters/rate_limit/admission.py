"""Atomic bucket maintenance and admission decision.

One hash per limiter key stores event counts per bucket, where a bucket field
is ``"<truncated_ts>:<precision_s>"``. Each invocation prunes the hash, raises
its TTL and, when the running total stays within the threshold, increments
the bucket that ends the window.

The routine exists twice with identical behavior:

- ``ADMISSION_SCRIPT``: Lua, executed by Redis as one atomic unit. It touches
  exactly one key so it is safe on Redis Cluster.
- ``run_admission``: the same steps over a ``HashRecord``, executed by the
  in-memory store while it holds the key's lock.

Positional arguments, in order:
``[current_ts, start_ts, end_ts, bucket_precision_s, stale_bucket_age_s, threshold]``.
"""

from __future__ import annotations

import math
from enum import IntEnum
from typing import Any, Protocol, Sequence

ARGUMENT_COUNT = 6


class AdmissionCode(IntEnum):
    ADMIT = 1
    DENY = 0
    WINDOW_INVALID = -1
    THRESHOLD_INVALID = -2
    ARGS_INVALID = -3


ADMISSION_SCRIPT = """
local key = KEYS[1]

local current_ts = tonumber(ARGV[1])
local start_ts = tonumber(ARGV[2])
local end_ts = tonumber(ARGV[3])
local precision = tonumber(ARGV[4])
local stale_age = tonumber(ARGV[5])
local threshold = tonumber(ARGV[6])

if not current_ts or not start_ts or not end_ts or not precision or not stale_age or not threshold then
    return -3
end

if threshold <= 0 then
    return -2
end

local window_length = end_ts - start_ts
if window_length < 0 then
    return -1
end

local key_ttl = math.max(math.floor(window_length), 1)
local current_field = tostring(end_ts) .. ':' .. tostring(precision)

if redis.call('EXISTS', key) == 0 then
    redis.call('HINCRBY', key, current_field, 1)
    redis.call('EXPIRE', key, key_ttl)
    return 1
end

local hash = redis.call('HGETALL', key)
local running_total = 1
local to_del = {}

for i = 1, #hash, 2 do
    local field = hash[i]
    local count = tonumber(hash[i + 1])
    local ts_part, precision_part = string.match(field, '^([^:]*):(.*)$')
    local ts = ts_part and tonumber(ts_part)
    local tag = precision_part and tonumber(precision_part)

    if not ts or not tag or not count or count <= 0 or count ~= math.floor(count) then
        table.insert(to_del, field)
    elseif ts + stale_age < current_ts then
        table.insert(to_del, field)
    elseif tag == precision then
        if ts + window_length < current_ts then
            table.insert(to_del, field)
        elseif ts >= start_ts and ts <= end_ts then
            running_total = running_total + count
        end
    end
end

for i = 1, #to_del, 1000 do
    redis.call('HDEL', key, unpack(to_del, i, math.min(i + 999, #to_del)))
end

local admitted = running_total <= threshold
if admitted then
    redis.call('HINCRBY', key, current_field, 1)
end

local ttl = redis.call('TTL', key)
if ttl == -1 or (ttl >= 0 and ttl < key_ttl) then
    redis.call('EXPIRE', key, key_ttl)
end

if admitted then
    return 1
end
return 0
"""


class HashRecord(Protocol):
    """The single-key hash operations the routine needs."""

    def exists(self) -> bool: ...

    def hgetall(self) -> dict[str, Any]: ...

    def hincrby(self, field: str, amount: int) -> int: ...

    def hdel(self, *fields: str) -> int: ...

    def ttl(self) -> int:
        """Remaining seconds, -1 without expiry, -2 when the key is missing."""
        ...

    def expire(self, seconds: int) -> bool: ...


def to_number(value: Any) -> int | float | None:
    """Coerce an argument or stored value the way Lua's ``tonumber`` would.

    Returns an ``int`` for integral values, a ``float`` otherwise and ``None``
    when the value is not a finite number.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return int(value)
    return value


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def bucket_field(timestamp: int | float, precision_seconds: int | float) -> str:
    """Field name for the bucket starting at ``timestamp``."""

    return f"{_format_number(timestamp)}:{_format_number(precision_seconds)}"


def parse_bucket_field(field: str | bytes) -> tuple[int | float, int | float] | None:
    """Split a bucket field into ``(timestamp, precision)``.

    Returns ``None`` for malformed fields.
    """

    if isinstance(field, bytes):
        field = field.decode("utf-8", errors="replace")
    ts_part, sep, precision_part = field.partition(":")
    if not sep:
        return None
    ts = to_number(ts_part)
    precision = to_number(precision_part)
    if ts is None or precision is None:
        return None
    return ts, precision


def _is_valid_count(count: int | float | None) -> bool:
    return isinstance(count, int) and count > 0


def run_admission(record: HashRecord, args: Sequence[Any]) -> int:
    """Prune buckets and decide admission for one key.

    The caller must guarantee that nothing else touches ``record`` until this
    returns. On any validation code the record is left untouched.

    Returns:
        An ``AdmissionCode`` value.
    """

    values = [to_number(arg) for arg in args[:ARGUMENT_COUNT]]
    if len(values) < ARGUMENT_COUNT or any(value is None for value in values):
        return AdmissionCode.ARGS_INVALID
    current_ts, start_ts, end_ts, precision, stale_age, threshold = values

    if threshold <= 0:
        return AdmissionCode.THRESHOLD_INVALID

    window_length = end_ts - start_ts
    if window_length < 0:
        return AdmissionCode.WINDOW_INVALID

    key_ttl = max(math.floor(window_length), 1)
    current_field = bucket_field(end_ts, precision)

    if not record.exists():
        record.hincrby(current_field, 1)
        record.expire(key_ttl)
        return AdmissionCode.ADMIT

    running_total = 1
    to_delete: list[str] = []

    for field, raw_count in record.hgetall().items():
        parsed = parse_bucket_field(field)
        count = to_number(raw_count)

        if parsed is None or not _is_valid_count(count):
            to_delete.append(field)
            continue

        ts, tag = parsed
        if ts + stale_age < current_ts:
            to_delete.append(field)
        elif tag == precision:
            if ts + window_length < current_ts:
                to_delete.append(field)
            elif start_ts <= ts <= end_ts:
                running_total += count
        # buckets of another precision are kept as-is

    if to_delete:
        record.hdel(*to_delete)

    admitted = running_total <= threshold
    if admitted:
        record.hincrby(current_field, 1)

    ttl = record.ttl()
    if ttl == -1 or 0 <= ttl < key_ttl:
        record.expire(key_ttl)

    return AdmissionCode.ADMIT if admitted else AdmissionCode.DENY
