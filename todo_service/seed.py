"""Create the todos table and insert sample items.

Run with ``python -m todo_service.seed``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from todo_service.config import Settings, get_settings
from todo_service.db import Database
from todo_service.lib.logger import configure_logging, get_logger
from todo_service.lib.metrics import MetricsRegistry
from todo_service.monitoring import register_instruments
from todo_service.todos.schemas import TodoRecord
from todo_service.todos.storage import TodoRepository

logger = get_logger(__name__)

# (title, completed, offset from now)
SAMPLE_TODOS: tuple[tuple[str, bool, timedelta], ...] = (
    ("Learn Docker basics", True, timedelta(days=-2)),
    ("Build a CI/CD pipeline", False, timedelta(days=-1)),
    ("Implement GitHub Secrets", False, timedelta()),
    ("Create live demo for lead", False, timedelta()),
    ("Deploy to production", False, timedelta(days=1)),
)


async def seed(database: Database, now: datetime | None = None) -> list[TodoRecord]:
    """Ensure the schema exists and insert the sample items."""

    now = now or datetime.now()
    await database.create_schema()
    repository = TodoRepository(database)
    created = []
    for title, completed, offset in SAMPLE_TODOS:
        created.append(await repository.create_todo(title, completed=completed, created_at=now + offset))
    return created


async def _main(settings: Settings) -> None:
    registry = register_instruments(MetricsRegistry(strict=settings.metrics_strict))
    database = Database.from_url(settings.database_url, registry, query_timeout=settings.db_query_timeout_seconds)
    try:
        created = await seed(database)
    finally:
        await database.dispose()
    logger.info("Database seeded successfully", extra={"inserted": len(created)})


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(_main(settings))
