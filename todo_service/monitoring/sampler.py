"""Background sampler publishing the active database connection count."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Protocol

from todo_service.lib.logger import get_logger
from todo_service.lib.metrics import MetricsError, MetricsRegistry
from todo_service.monitoring.instruments import CONNECTIONS_ACTIVE, CONNECTION_SAMPLES_SKIPPED

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0


class SamplerQueryError(MetricsError):
    """Raised when the connection count query fails."""


class SamplerState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"


class ConnectionCounter(Protocol):
    async def count_active_connections(self, database_name: str) -> int: ...


class ConnectionSampler:
    """Poll the database on a fixed interval with at most one query in flight.

    A tick that fires while the previous sample is still running is skipped.
    Failed samples leave the gauge at its last value.
    """

    def __init__(
        self,
        database: ConnectionCounter,
        registry: MetricsRegistry,
        database_name: str,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._database = database
        self._registry = registry
        self._database_name = database_name
        self._interval = interval
        self._timer: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[int | None] | None = None
        self.state = SamplerState.IDLE

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name="connection-sampler")
        logger.info("Connection sampler started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        """Cancel the timer and abandon any outstanding sample."""

        pending = [task for task in (self._timer, self._inflight) if task is not None and not task.done()]
        self._timer = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._inflight = None
        self.state = SamplerState.IDLE
        logger.info("Connection sampler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()

    def tick(self) -> asyncio.Task[int | None] | None:
        """Launch a sample unless one is still outstanding."""

        if self._inflight is not None and not self._inflight.done():
            self._registry.increment(CONNECTION_SAMPLES_SKIPPED)
            logger.debug("Previous connection sample still running; skipping tick")
            return None
        self._inflight = asyncio.create_task(self.sample_once(), name="connection-sample")
        return self._inflight

    async def sample_once(self) -> int | None:
        self.state = SamplerState.SAMPLING
        try:
            count = await self._query()
            self._registry.set(CONNECTIONS_ACTIVE, count)
            return count
        except SamplerQueryError as exc:
            logger.error(str(exc), exc_info=exc, extra={"database": self._database_name})
            return None
        except MetricsError as exc:
            logger.error("Could not record connection count", exc_info=exc, extra={"database": self._database_name})
            return None
        finally:
            self.state = SamplerState.IDLE

    async def _query(self) -> int:
        try:
            return int(await self._database.count_active_connections(self._database_name))
        except Exception as exc:
            raise SamplerQueryError(f"Error getting connection count: {exc}") from exc
