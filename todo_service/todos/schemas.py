"""Schemas for todo requests and responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TodoCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class TodoUpdate(BaseModel):
    completed: bool
    title: str | None = Field(default=None, min_length=1, max_length=255)


class TodoRecord(BaseModel):
    """A persisted todo row."""

    id: int
    title: str
    completed: bool = False
    created_at: datetime | None = None


class TodoDeleted(BaseModel):
    message: str = "Todo deleted"
