import asyncio

import pytest

import timed_map.core.driver as driver_mod


class FakeClock:
    """Stand-in for ``time.time_ns`` advanced in whole milliseconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms * 1_000_000

    def advance(self, millis: int) -> None:
        self.now_ms += millis


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(driver_mod.time, "time_ns", fake)
    return fake


async def drain() -> None:
    """Let callbacks already queued with ``call_soon`` run."""
    for _ in range(3):
        await asyncio.sleep(0)


class Recorder:
    """Listener that keeps every EventInfo it receives."""

    def __init__(self) -> None:
        self.events = []

    def __call__(self, info) -> None:
        self.events.append(info)

    @property
    def count(self) -> int:
        return len(self.events)


@pytest.fixture
def recorder():
    return Recorder()
