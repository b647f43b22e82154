"""Table definition and queries for todo items."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Table, delete, false, func, insert, select, update

from todo_service.db import Database, metadata
from todo_service.todos.schemas import TodoRecord

todos = Table(
    "todos",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("completed", Boolean, nullable=False, server_default=false()),
    Column("created_at", DateTime, server_default=func.now()),
)


class TodoRepository:
    """CRUD access to the todos table through the instrumented database."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def list_todos(self) -> list[TodoRecord]:
        rows = await self._database.fetch_all(select(todos).order_by(todos.c.id))
        return [TodoRecord.model_validate(row) for row in rows]

    async def get_todo(self, todo_id: int) -> TodoRecord | None:
        row = await self._database.fetch_one(select(todos).where(todos.c.id == todo_id))
        return TodoRecord.model_validate(row) if row else None

    async def create_todo(
        self,
        title: str,
        *,
        completed: bool | None = None,
        created_at: datetime | None = None,
    ) -> TodoRecord:
        values: dict[str, object] = {"title": title}
        if completed is not None:
            values["completed"] = completed
        if created_at is not None:
            values["created_at"] = created_at
        row = await self._database.fetch_one(insert(todos).values(**values).returning(*todos.c))
        if row is None:  # pragma: no cover - INSERT ... RETURNING always yields the row
            raise RuntimeError("Insert returned no row")
        return TodoRecord.model_validate(row)

    async def update_todo(self, todo_id: int, completed: bool, title: str | None = None) -> TodoRecord | None:
        values: dict[str, object] = {"completed": completed}
        if title is not None:
            values["title"] = title
        statement = update(todos).where(todos.c.id == todo_id).values(**values).returning(*todos.c)
        row = await self._database.fetch_one(statement)
        return TodoRecord.model_validate(row) if row else None

    async def delete_todo(self, todo_id: int) -> bool:
        deleted = await self._database.execute(delete(todos).where(todos.c.id == todo_id))
        return deleted > 0
