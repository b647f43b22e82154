"""ASGI middleware recording request counts and latency per route template."""

from __future__ import annotations

import time
from typing import Iterable

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from todo_service.lib.metrics import MetricsRegistry
from todo_service.monitoring.instruments import HTTP_DURATION, HTTP_REQUESTS

UNMATCHED_PATH = "unmatched"
OTHER_METHOD = "OTHER"

_KNOWN_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"})


def normalize_method(method: str) -> str:
    method = method.upper()
    return method if method in _KNOWN_METHODS else OTHER_METHOD


def route_template(scope: Scope) -> str:
    """Return the matched route template, never the raw request path."""

    route = scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    return template if isinstance(template, str) else UNMATCHED_PATH


class RequestTimer:
    """Per-request timer that records its observation exactly once."""

    def __init__(self, registry: MetricsRegistry, method: str) -> None:
        self._registry = registry
        self._started = time.perf_counter()
        self._closed = False
        self.method = method
        # Stays 500 when the handler fails before a response starts.
        self.status_code = 500

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, path: str) -> None:
        if self._closed:
            return
        self._closed = True
        elapsed = time.perf_counter() - self._started
        labels = {"method": self.method, "path": path, "status_code": str(self.status_code)}
        self._registry.increment(HTTP_REQUESTS, labels=labels)
        self._registry.observe(HTTP_DURATION, elapsed, labels=labels)


class HttpMetricsMiddleware:
    def __init__(self, app: ASGIApp, registry: MetricsRegistry, excluded_paths: Iterable[str] = ()) -> None:
        self.app = app
        self._registry = registry
        self._excluded_paths = frozenset(excluded_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self._excluded_paths:
            await self.app(scope, receive, send)
            return

        timer = RequestTimer(self._registry, normalize_method(scope["method"]))

        async def send_with_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                timer.status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        finally:
            timer.close(route_template(scope))
