"""Tests for the periodic database connection sampler."""

from __future__ import annotations

import asyncio
import logging

import pytest

from todo_service.lib.metrics import MetricsRegistry
from todo_service.monitoring import ConnectionSampler, SamplerState, register_instruments
from todo_service.monitoring.instruments import CONNECTION_SAMPLES_SKIPPED, CONNECTIONS_ACTIVE


class _FakeDatabase:
    """Connection counter whose queries block until released."""

    def __init__(self, result: int = 3, *, fail: bool = False) -> None:
        self.result = result
        self.fail = fail
        self.calls = 0
        self.names: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.release = asyncio.Event()

    async def count_active_connections(self, database_name: str) -> int:
        self.calls += 1
        self.names.append(database_name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            if self.fail:
                raise ConnectionError("database unavailable")
            return self.result
        finally:
            self.in_flight -= 1


@pytest.fixture()
def registry() -> MetricsRegistry:
    return register_instruments(MetricsRegistry())


def _gauge(registry: MetricsRegistry) -> float:
    return registry.get(CONNECTIONS_ACTIVE).value()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_sample_sets_gauge_and_returns_to_idle(registry: MetricsRegistry) -> None:
    database = _FakeDatabase(result=4)
    database.release.set()
    sampler = ConnectionSampler(database, registry, "todos")

    assert await sampler.sample_once() == 4

    assert _gauge(registry) == 4
    assert database.names == ["todos"]
    assert sampler.state is SamplerState.IDLE


@pytest.mark.asyncio
async def test_tick_skips_while_sample_outstanding(registry: MetricsRegistry) -> None:
    database = _FakeDatabase(result=2)
    sampler = ConnectionSampler(database, registry, "todos")

    first = sampler.tick()
    await asyncio.sleep(0)
    assert sampler.state is SamplerState.SAMPLING
    assert sampler.tick() is None
    assert sampler.tick() is None

    database.release.set()
    assert first is not None
    assert await first == 2

    assert database.calls == 1
    assert database.max_in_flight == 1
    assert registry.get(CONNECTION_SAMPLES_SKIPPED).value() == 2  # type: ignore[attr-defined]

    second = sampler.tick()
    assert second is not None
    await second
    assert database.calls == 2


@pytest.mark.asyncio
async def test_fast_timer_never_overlaps_queries(registry: MetricsRegistry) -> None:
    database = _FakeDatabase()
    sampler = ConnectionSampler(database, registry, "todos", interval=0.01)

    sampler.start()
    await asyncio.sleep(0.1)

    assert database.calls == 1
    assert database.max_in_flight == 1
    assert registry.get(CONNECTION_SAMPLES_SKIPPED).value() >= 1  # type: ignore[attr-defined]
    await sampler.stop()


@pytest.mark.asyncio
async def test_failed_sample_keeps_last_value(registry: MetricsRegistry, caplog: pytest.LogCaptureFixture) -> None:
    database = _FakeDatabase(result=5)
    database.release.set()
    sampler = ConnectionSampler(database, registry, "todos")
    await sampler.sample_once()

    database.fail = True
    with caplog.at_level(logging.ERROR, logger="todo_service.monitoring.sampler"):
        assert await sampler.sample_once() is None

    assert _gauge(registry) == 5
    assert sampler.state is SamplerState.IDLE
    assert any("Error getting connection count" in record.getMessage() for record in caplog.records)

    database.fail = False
    database.result = 6
    assert await sampler.sample_once() == 6


@pytest.mark.asyncio
async def test_stop_cancels_timer_and_abandons_sample(registry: MetricsRegistry) -> None:
    database = _FakeDatabase()
    sampler = ConnectionSampler(database, registry, "todos", interval=0.01)
    sampler.start()
    assert sampler.running

    while database.calls == 0:
        await asyncio.sleep(0.005)
    await sampler.stop()

    assert not sampler.running
    assert sampler.state is SamplerState.IDLE
    assert database.in_flight == 0
    calls = database.calls
    await asyncio.sleep(0.05)
    assert database.calls == calls


def test_interval_must_be_positive(registry: MetricsRegistry) -> None:
    with pytest.raises(ValueError):
        ConnectionSampler(_FakeDatabase(), registry, "todos", interval=0)


@pytest.mark.asyncio
async def test_rejected_gauge_update_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    database = _FakeDatabase(result=2)
    database.release.set()
    sampler = ConnectionSampler(database, MetricsRegistry(strict=True), "todos")

    with caplog.at_level(logging.ERROR, logger="todo_service.monitoring.sampler"):
        assert await sampler.sample_once() is None

    assert sampler.state is SamplerState.IDLE
    assert any(record.getMessage() == "Could not record connection count" for record in caplog.records)
