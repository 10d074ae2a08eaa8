"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any windowlimit import so settings never
pick up a developer's .env file or a real Redis URL.
"""

from __future__ import annotations

import os

os.environ["TESTING"] = "true"
os.environ["APP_ENV"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest

from windowlimit.adapters.store.in_memory import InMemoryScriptStore

# 2022-10-03T21:34:34Z, 34 seconds past a minute boundary
NOW = 1664832874.0


class FakeClock:
    """Deterministic clock shared by the limiter and the in-memory store."""

    def __init__(self, start: float = NOW) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryScriptStore:
    return InMemoryScriptStore(clock=clock)
