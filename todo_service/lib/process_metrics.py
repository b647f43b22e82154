"""Process resource metrics refreshed on every scrape."""

from __future__ import annotations

import asyncio
from typing import Callable

import psutil

from todo_service.lib.logger import get_logger
from todo_service.lib.metrics import MetricsRegistry

logger = get_logger(__name__)

CPU_SECONDS = "process_cpu_seconds_total"
RESIDENT_MEMORY = "process_resident_memory_bytes"
VIRTUAL_MEMORY = "process_virtual_memory_bytes"
OPEN_FDS = "process_open_fds"
START_TIME = "process_start_time_seconds"
EVENT_LOOP_LAG = "process_event_loop_lag_seconds"

_READ_ERRORS = (psutil.Error, OSError, AttributeError, NotImplementedError)


class ProcessMetricsSampler:
    """Write CPU, memory, handle and event loop readings into the registry.

    Each stat is read independently. A stat that cannot be read keeps its
    previous value, or stays out of the exposition until its first successful
    read, and does not abort the rest of the sample.
    """

    def __init__(self, registry: MetricsRegistry, process: psutil.Process | None = None) -> None:
        self._registry = registry
        self._process = process or psutil.Process()
        self._cpu_seconds_seen = 0.0

        registry.counter(CPU_SECONDS, "Total user and system CPU time spent in seconds", lazy=True)
        registry.gauge(RESIDENT_MEMORY, "Resident memory size in bytes", lazy=True)
        registry.gauge(VIRTUAL_MEMORY, "Virtual memory size in bytes", lazy=True)
        registry.gauge(OPEN_FDS, "Number of open file descriptors or handles", lazy=True)
        registry.gauge(START_TIME, "Start time of the process since unix epoch in seconds", lazy=True)
        registry.gauge(EVENT_LOOP_LAG, "Delay before the event loop ran a yielded task, in seconds", lazy=True)

    async def sample(self) -> None:
        self._read(CPU_SECONDS, self._sample_cpu)
        self._read(RESIDENT_MEMORY, self._sample_memory)
        self._read(OPEN_FDS, self._sample_open_fds)
        self._read(START_TIME, self._sample_start_time)
        await self._sample_event_loop_lag()

    def _read(self, stat: str, reader: Callable[[], None]) -> None:
        try:
            reader()
        except _READ_ERRORS as exc:
            logger.warning("Could not read process stat", extra={"stat": stat, "error": str(exc)})

    def _sample_cpu(self) -> None:
        times = self._process.cpu_times()
        total = times.user + times.system
        delta = total - self._cpu_seconds_seen
        if delta > 0:
            self._registry.increment(CPU_SECONDS, delta)
            self._cpu_seconds_seen = total

    def _sample_memory(self) -> None:
        info = self._process.memory_info()
        self._registry.set(RESIDENT_MEMORY, info.rss)
        self._registry.set(VIRTUAL_MEMORY, info.vms)

    def _sample_open_fds(self) -> None:
        if psutil.WINDOWS:
            count = self._process.num_handles()
        else:
            count = self._process.num_fds()
        self._registry.set(OPEN_FDS, count)

    def _sample_start_time(self) -> None:
        self._registry.set(START_TIME, self._process.create_time())

    async def _sample_event_loop_lag(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.sleep(0)
        self._registry.set(EVENT_LOOP_LAG, loop.time() - started)
