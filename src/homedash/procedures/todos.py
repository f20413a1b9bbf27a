"""
Todo namespace procedures.

Thin bindings from ``todo.*`` names to the TodoStore. Unknown ids are
reported as not_found here; the store itself returns None/False.
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from homedash.errors import NotFoundError
from homedash.routing import ProcedureKind, ProcedureRegistry

if TYPE_CHECKING:
    from homedash.context import ProcedureContext
    from homedash.services.todos import Todo, TodoStore


class TodoCreateInput(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None


class TodoIdInput(BaseModel):
    id: str = Field(min_length=1)


class TodoUpdateInput(BaseModel):
    id: str = Field(min_length=1)
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    completed: bool | None = None


def _require(todo: Todo | None, todo_id: str) -> dict[str, Any]:
    if todo is None:
        raise NotFoundError(
            f"Todo with id {todo_id} not found",
            details={"id": todo_id},
        )
    return todo.to_dict()


# =============================================================================
# Handlers
# =============================================================================


async def handle_todo_create(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    return store.create(params["title"], params.get("description")).to_dict()


async def handle_todo_get_all(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> list[dict[str, Any]]:
    return [todo.to_dict() for todo in store.get_all()]


async def handle_todo_get_by_id(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    return _require(store.get_by_id(params["id"]), params["id"])


async def handle_todo_update(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    """Update the supplied fields; omitted (null) fields keep their value."""
    todo_id = params["id"]
    fields = {
        key: value
        for key, value in params.items()
        if key != "id" and value is not None
    }
    return _require(store.update(todo_id, **fields), todo_id)


async def handle_todo_delete(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    if not store.delete(params["id"]):
        raise NotFoundError(
            f"Todo with id {params['id']} not found",
            details={"id": params["id"]},
        )
    return {"success": True}


async def handle_todo_mark_completed(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    return _require(store.mark_completed(params["id"]), params["id"])


async def handle_todo_mark_incomplete(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    return _require(store.mark_incomplete(params["id"]), params["id"])


async def handle_todo_get_completed(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> list[dict[str, Any]]:
    return [todo.to_dict() for todo in store.get_completed()]


async def handle_todo_get_pending(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> list[dict[str, Any]]:
    return [todo.to_dict() for todo in store.get_pending()]


async def handle_todo_clear(
    ctx: ProcedureContext, params: dict[str, Any], *, store: TodoStore
) -> dict[str, Any]:
    store.clear()
    return {"success": True}


# (name, handler, kind, input model, description)
_TODO_PROCEDURES = (
    ("todo.create", handle_todo_create, ProcedureKind.MUTATION, TodoCreateInput, "Create a todo"),
    ("todo.get_all", handle_todo_get_all, ProcedureKind.QUERY, None, "List all todos"),
    ("todo.get_by_id", handle_todo_get_by_id, ProcedureKind.QUERY, TodoIdInput, "Get one todo"),
    ("todo.update", handle_todo_update, ProcedureKind.MUTATION, TodoUpdateInput, "Update a todo"),
    ("todo.delete", handle_todo_delete, ProcedureKind.MUTATION, TodoIdInput, "Delete a todo"),
    (
        "todo.mark_completed",
        handle_todo_mark_completed,
        ProcedureKind.MUTATION,
        TodoIdInput,
        "Mark a todo as completed",
    ),
    (
        "todo.mark_incomplete",
        handle_todo_mark_incomplete,
        ProcedureKind.MUTATION,
        TodoIdInput,
        "Mark a todo as not completed",
    ),
    ("todo.get_completed", handle_todo_get_completed, ProcedureKind.QUERY, None, "List completed todos"),
    ("todo.get_pending", handle_todo_get_pending, ProcedureKind.QUERY, None, "List pending todos"),
    ("todo.clear", handle_todo_clear, ProcedureKind.MUTATION, None, "Delete every todo"),
)


def register_todo_procedures(registry: ProcedureRegistry, store: TodoStore) -> None:
    for name, handler, kind, input_model, description in _TODO_PROCEDURES:
        registry.register(
            name,
            partial(handler, store=store),
            kind=kind,
            input_model=input_model,
            description=description,
        )
