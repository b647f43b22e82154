"""Scrape endpoint exposing the metrics registry."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from todo_service.lib.logger import get_logger
from todo_service.lib.metrics import CONTENT_TYPE, MetricsError, MetricsRegistry
from todo_service.lib.process_metrics import ProcessMetricsSampler

logger = get_logger(__name__)


def get_metrics_registry(request: Request) -> MetricsRegistry:
    registry: MetricsRegistry | None = getattr(request.app.state, "metrics", None)
    if registry is None:
        raise RuntimeError("Metrics registry not configured on application state")
    return registry


def get_process_sampler(request: Request) -> ProcessMetricsSampler | None:
    return getattr(request.app.state, "process_sampler", None)


async def scrape_metrics(
    registry: MetricsRegistry = Depends(get_metrics_registry),
    process_sampler: ProcessMetricsSampler | None = Depends(get_process_sampler),
) -> Response:
    """Refresh process readings and render the registry for a scraper."""

    try:
        if process_sampler is not None:
            await process_sampler.sample()
        body = registry.snapshot()
    except MetricsError as exc:
        logger.exception("Metrics scrape failed")
        return PlainTextResponse(str(exc), status_code=500)
    return Response(content=body, media_type=CONTENT_TYPE)


def build_metrics_router(path: str) -> APIRouter:
    """Return a router serving the scrape endpoint at ``path``."""

    metrics_router = APIRouter()
    metrics_router.add_api_route(
        path,
        scrape_metrics,
        methods=["GET"],
        tags=["system"],
        summary="Prometheus metrics",
        include_in_schema=False,
    )
    return metrics_router
