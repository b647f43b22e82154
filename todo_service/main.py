"""FastAPI application entrypoint for the instrumented todo service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from todo_service import __version__
from todo_service.config import Settings, get_settings
from todo_service.db import Database
from todo_service.lib.logger import configure_logging, get_logger
from todo_service.lib.metrics import MetricsRegistry
from todo_service.lib.process_metrics import ProcessMetricsSampler
from todo_service.monitoring import (
    ConnectionSampler,
    HttpMetricsMiddleware,
    build_metrics_router,
    register_instruments,
)
from todo_service.monitoring.instruments import UP
from todo_service.todos.routes import router as todos_router
from todo_service.todos.storage import TodoRepository

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with one registry shared by every component."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    registry = register_instruments(MetricsRegistry(strict=settings.metrics_strict))
    process_sampler = ProcessMetricsSampler(registry)
    database = Database.from_url(
        settings.database_url,
        registry,
        query_timeout=settings.db_query_timeout_seconds,
    )
    connection_sampler = ConnectionSampler(
        database,
        registry,
        settings.db_name,
        interval=settings.connection_sample_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await database.create_schema()
            logger.info("Table created or already exists")
        except (SQLAlchemyError, OSError, TimeoutError):
            logger.exception("Error creating table")
        registry.set(UP, 1)
        connection_sampler.start()
        logger.info(
            "Server running",
            extra={"port": settings.port, "metrics_path": settings.metrics_path},
        )
        try:
            yield
        finally:
            await connection_sampler.stop()
            await database.dispose()

    app = FastAPI(title="Todo Service", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it wraps every other middleware.
    app.add_middleware(HttpMetricsMiddleware, registry=registry, excluded_paths=[settings.metrics_path])

    app.state.settings = settings
    app.state.metrics = registry
    app.state.process_sampler = process_sampler
    app.state.database = database
    app.state.connection_sampler = connection_sampler
    app.state.todo_repository = TodoRepository(database)

    app.include_router(build_metrics_router(settings.metrics_path))
    app.include_router(todos_router)

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database query failed", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(TimeoutError)
    async def handle_database_timeout(request: Request, exc: TimeoutError) -> JSONResponse:
        logger.error("Database query timed out", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"error": "Database query timed out"})

    @app.get("/health", tags=["system"], summary="Health check")
    async def health_check() -> JSONResponse:
        """Return liveness response for uptime monitoring."""
        return JSONResponse({"status": "OK", "message": "Server is running"})

    return app


app = create_app()
