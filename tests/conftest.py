"""Pytest fixtures for the todo service tests."""

from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client.parser import text_string_to_metric_families

from todo_service.config import Settings
from todo_service.main import create_app

SampleKey = tuple[str, tuple[tuple[str, str], ...]]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'todos.db'}",
        DB_NAME="todos",
        METRICS_STRICT=True,
    )


@pytest.fixture()
def app(settings: Settings) -> FastAPI:
    """Return a freshly built application with its own registry."""
    return create_app(settings)


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an `httpx.AsyncClient` bound to the app with the schema in place."""
    await app.state.database.create_schema()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    await app.state.database.dispose()


@pytest.fixture()
def parse_metrics() -> Callable[[str], dict[SampleKey, float]]:
    """Return a parser mapping (sample name, sorted labels) to values."""

    def _parse(text: str) -> dict[SampleKey, float]:
        samples: dict[SampleKey, float] = {}
        for family in text_string_to_metric_families(text):
            for sample in family.samples:
                samples[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
        return samples

    return _parse
