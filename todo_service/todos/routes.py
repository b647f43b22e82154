"""CRUD routes for todo items."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from todo_service.lib.metrics import MetricsRegistry
from todo_service.monitoring.instruments import ITEMS_CREATED
from todo_service.monitoring.routes import get_metrics_registry
from todo_service.todos.schemas import TodoCreate, TodoDeleted, TodoRecord, TodoUpdate
from todo_service.todos.storage import TodoRepository

router = APIRouter(prefix="/todos", tags=["todos"])


def get_todo_repository(request: Request) -> TodoRepository:
    repository: TodoRepository | None = getattr(request.app.state, "todo_repository", None)
    if repository is None:
        raise RuntimeError("Todo repository not configured on application state")
    return repository


@router.get("", response_model=list[TodoRecord])
async def list_todos(repository: TodoRepository = Depends(get_todo_repository)) -> list[TodoRecord]:
    return await repository.list_todos()


@router.get("/{todo_id}", response_model=TodoRecord)
async def get_todo(todo_id: int, repository: TodoRepository = Depends(get_todo_repository)) -> TodoRecord:
    record = await repository.get_todo(todo_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return record


@router.post("", response_model=TodoRecord)
async def create_todo(
    payload: TodoCreate,
    repository: TodoRepository = Depends(get_todo_repository),
    metrics: MetricsRegistry = Depends(get_metrics_registry),
) -> TodoRecord:
    """Insert a todo and count it once the row is stored."""

    record = await repository.create_todo(payload.title)
    metrics.increment(ITEMS_CREATED)
    return record


@router.put("/{todo_id}", response_model=TodoRecord)
async def update_todo(
    todo_id: int,
    payload: TodoUpdate,
    repository: TodoRepository = Depends(get_todo_repository),
) -> TodoRecord:
    record = await repository.update_todo(todo_id, payload.completed, payload.title)
    if record is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return record


@router.delete("/{todo_id}", response_model=TodoDeleted)
async def delete_todo(todo_id: int, repository: TodoRepository = Depends(get_todo_repository)) -> TodoDeleted:
    if not await repository.delete_todo(todo_id):
        raise HTTPException(status_code=404, detail="Todo not found")
    return TodoDeleted()
