"""End-to-end tests for the todo API and its metrics endpoint."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from todo_service.config import Settings
from todo_service.lib.metrics import ScrapeSerializationError
from todo_service.main import create_app
from todo_service.monitoring.instruments import (
    CONNECTIONS_ACTIVE,
    QUERY_DURATION,
    QUERY_ERRORS,
    UP,
)


@pytest.mark.asyncio
async def test_health_endpoint(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "OK", "message": "Server is running"}


@pytest.mark.asyncio
async def test_metrics_available_before_any_request(async_client: AsyncClient, parse_metrics) -> None:
    response = await async_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain; version=0.0.4")
    samples = parse_metrics(response.text)
    assert samples[("process_resident_memory_bytes", ())] > 0
    assert ("process_cpu_seconds_total", ()) in samples
    assert samples[("items_created_total", ())] == 0


@pytest.mark.asyncio
async def test_create_todo_increments_counter(async_client: AsyncClient, parse_metrics) -> None:
    before = parse_metrics((await async_client.get("/metrics")).text)[("items_created_total", ())]

    response = await async_client.post("/todos", json={"title": "Buy milk"})

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Buy milk"
    assert body["completed"] is False
    assert isinstance(body["id"], int)
    assert body["created_at"]

    after = parse_metrics((await async_client.get("/metrics")).text)[("items_created_total", ())]
    assert after == before + 1


@pytest.mark.asyncio
async def test_todo_crud_roundtrip(async_client: AsyncClient) -> None:
    first = (await async_client.post("/todos", json={"title": "Write tests"})).json()
    second = (await async_client.post("/todos", json={"title": "Ship it"})).json()

    listing = await async_client.get("/todos")
    assert [item["id"] for item in listing.json()] == [first["id"], second["id"]]

    fetched = await async_client.get(f"/todos/{first['id']}")
    assert fetched.json()["title"] == "Write tests"

    updated = await async_client.put(f"/todos/{first['id']}", json={"completed": True})
    assert updated.status_code == 200
    assert updated.json()["completed"] is True
    assert updated.json()["title"] == "Write tests"

    deleted = await async_client.delete(f"/todos/{second['id']}")
    assert deleted.json() == {"message": "Todo deleted"}

    remaining = (await async_client.get("/todos")).json()
    assert [item["id"] for item in remaining] == [first["id"]]


@pytest.mark.asyncio
async def test_missing_todo_returns_404(async_client: AsyncClient) -> None:
    assert (await async_client.get("/todos/999")).status_code == 404
    assert (await async_client.put("/todos/999", json={"completed": True})).status_code == 404
    assert (await async_client.delete("/todos/999")).status_code == 404


@pytest.mark.asyncio
async def test_create_rejects_missing_title(async_client: AsyncClient, app: FastAPI) -> None:
    response = await async_client.post("/todos", json={})

    assert response.status_code == 422
    assert app.state.metrics.get("items_created_total").value() == 0


@pytest.mark.asyncio
async def test_http_metrics_use_route_templates(async_client: AsyncClient, parse_metrics) -> None:
    created = (await async_client.post("/todos", json={"title": "Label me"})).json()
    await async_client.get(f"/todos/{created['id']}")
    await async_client.get("/todos/424242")

    samples = parse_metrics((await async_client.get("/metrics")).text)

    def requests(method: str, path: str, status: str) -> float:
        labels = (("method", method), ("path", path), ("status_code", status))
        return samples.get(("http_requests_total", labels), 0)

    assert requests("POST", "/todos", "200") == 1
    assert requests("GET", "/todos/{todo_id}", "200") == 1
    assert requests("GET", "/todos/{todo_id}", "404") == 1
    assert not any(key[0] == "http_requests_total" and "/metrics" in str(key[1]) for key in samples)


@pytest.mark.asyncio
async def test_database_failure_returns_500(monkeypatch, async_client: AsyncClient, app: FastAPI) -> None:
    async def broken() -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(app.state.todo_repository, "list_todos", broken)

    response = await async_client.get("/todos")

    assert response.status_code == 500
    assert "connection refused" in response.json()["error"]


@pytest.mark.asyncio
async def test_query_duration_recorded_on_failure(async_client: AsyncClient, app: FastAPI) -> None:
    database = app.state.database
    registry = app.state.metrics
    before = registry.get(QUERY_DURATION).snapshot().value().count

    with pytest.raises(SQLAlchemyError):
        await database.fetch_all(text("SELECT * FROM no_such_table"))

    assert registry.get(QUERY_DURATION).snapshot().value().count == before + 1
    assert registry.get(QUERY_ERRORS).value() == 1


@pytest.mark.asyncio
async def test_query_timeout_bounds_round_trip(settings: Settings) -> None:
    app = create_app(settings.model_copy(update={"db_query_timeout_seconds": 0.01}))
    database = app.state.database

    with pytest.raises(TimeoutError):
        await database._bounded(asyncio.sleep(1))


@pytest.mark.asyncio
async def test_scrape_failure_returns_500(monkeypatch, async_client: AsyncClient, app: FastAPI) -> None:
    def fail() -> str:
        raise ScrapeSerializationError("render failed")

    monkeypatch.setattr(app.state.metrics, "snapshot", fail)

    response = await async_client.get("/metrics")

    assert response.status_code == 500
    assert response.text == "render failed"


@pytest.mark.asyncio
async def test_lifespan_starts_and_stops_sampler(settings: Settings) -> None:
    app = create_app(settings.model_copy(update={"connection_sample_interval_seconds": 0.01}))
    registry = app.state.metrics
    sampler = app.state.connection_sampler

    async with app.router.lifespan_context(app):
        assert sampler.running
        assert registry.get(UP).value() == 1
        await asyncio.sleep(0.1)

    assert not sampler.running
    # SQLite has no pg_stat_activity, so every sample fails and the gauge stays put.
    assert registry.get(QUERY_ERRORS).value() >= 1
    assert registry.get(CONNECTIONS_ACTIVE).value() == 0
