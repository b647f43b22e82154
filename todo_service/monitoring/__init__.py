"""Monitoring package wiring HTTP, database and process metrics."""

from todo_service.monitoring.instruments import register_instruments
from todo_service.monitoring.middleware import HttpMetricsMiddleware
from todo_service.monitoring.routes import build_metrics_router
from todo_service.monitoring.sampler import ConnectionSampler, SamplerQueryError, SamplerState

__all__ = [
    "ConnectionSampler",
    "HttpMetricsMiddleware",
    "SamplerQueryError",
    "SamplerState",
    "build_metrics_router",
    "register_instruments",
]
