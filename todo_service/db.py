"""Async database access with query timing instrumentation."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, TypeVar

from sqlalchemy import MetaData, text
from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql import Executable

from todo_service.lib.metrics import MetricsRegistry
from todo_service.monitoring.instruments import QUERY_DURATION, QUERY_ERRORS

metadata = MetaData()

_ACTIVE_CONNECTIONS_SQL = text("SELECT count(*) FROM pg_stat_activity WHERE datname = :name")

T = TypeVar("T")


class Database:
    """Run statements against the pool, timing every round trip."""

    def __init__(
        self,
        engine: AsyncEngine,
        metrics: MetricsRegistry,
        *,
        query_timeout: float | None = None,
    ) -> None:
        self._engine = engine
        self._metrics = metrics
        self._query_timeout = query_timeout

    @classmethod
    def from_url(
        cls,
        url: str,
        metrics: MetricsRegistry,
        *,
        query_timeout: float | None = None,
    ) -> Database:
        engine = create_async_engine(url, pool_pre_ping=True)
        return cls(engine, metrics, query_timeout=query_timeout)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _timed(self) -> AsyncIterator[None]:
        start = time.perf_counter()
        try:
            yield
        except Exception:
            self._metrics.increment(QUERY_ERRORS)
            raise
        finally:
            self._metrics.observe(QUERY_DURATION, time.perf_counter() - start)

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self._query_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._query_timeout)

    async def _run(
        self,
        statement: Executable,
        handler: Callable[[Result[Any]], T],
        params: Mapping[str, Any] | None = None,
    ) -> T:
        async def _round_trip() -> T:
            async with self._engine.begin() as conn:
                result = await conn.execute(statement, params)
                return handler(result)

        async with self._timed():
            return await self._bounded(_round_trip())

    async def fetch_all(self, statement: Executable, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        return await self._run(statement, lambda result: [dict(row) for row in result.mappings()], params)

    async def fetch_one(self, statement: Executable, params: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        def _first(result: Result[Any]) -> dict[str, Any] | None:
            row = result.mappings().first()
            return dict(row) if row is not None else None

        return await self._run(statement, _first, params)

    async def execute(self, statement: Executable, params: Mapping[str, Any] | None = None) -> int:
        """Execute a statement and return the affected row count."""

        return await self._run(statement, lambda result: result.rowcount, params)

    async def count_active_connections(self, database_name: str) -> int:
        """Return the number of server connections open against ``database_name``."""

        return await self._run(
            _ACTIVE_CONNECTIONS_SQL,
            lambda result: int(result.scalar_one()),
            {"name": database_name},
        )

    async def create_schema(self) -> None:
        async def _create() -> None:
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)

        async with self._timed():
            await self._bounded(_create())

    async def dispose(self) -> None:
        await self._engine.dispose()
