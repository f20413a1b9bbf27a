"""
In-memory todo store.

Todos live only in process memory. Ids are increasing integers rendered as
strings; they are never reused, not even after ``clear()``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

UPDATABLE_FIELDS = frozenset({"title", "description", "completed"})


@dataclass(frozen=True)
class Todo:
    id: str
    title: str
    description: str | None
    completed: bool
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class TodoStore:
    """CRUD registry of todos keyed by id, in insertion order."""

    def __init__(self) -> None:
        self._todos: dict[str, Todo] = {}
        self._next_id = 1

    def _generate_id(self) -> str:
        todo_id = str(self._next_id)
        self._next_id += 1
        return todo_id

    def create(self, title: str, description: str | None = None) -> Todo:
        now = datetime.now(UTC)
        todo = Todo(
            id=self._generate_id(),
            title=title,
            description=description,
            completed=False,
            created_at=now,
            updated_at=now,
        )
        self._todos[todo.id] = todo
        return todo

    def get_all(self) -> list[Todo]:
        return list(self._todos.values())

    def get_by_id(self, todo_id: str) -> Todo | None:
        return self._todos.get(todo_id)

    def update(self, todo_id: str, **fields: Any) -> Todo | None:
        """
        Replace the given fields of a todo.

        Args:
            todo_id: Todo id.
            **fields: Any of title, description, completed.

        Returns:
            The updated todo, or None when the id is unknown.

        Raises:
            ValueError: If a field outside title/description/completed is given.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        todo = self._todos.get(todo_id)
        if todo is None:
            return None

        updated = replace(todo, **fields, updated_at=datetime.now(UTC))
        self._todos[todo_id] = updated
        return updated

    def delete(self, todo_id: str) -> bool:
        """Remove a todo; returns False when the id is unknown."""
        return self._todos.pop(todo_id, None) is not None

    def mark_completed(self, todo_id: str) -> Todo | None:
        return self.update(todo_id, completed=True)

    def mark_incomplete(self, todo_id: str) -> Todo | None:
        return self.update(todo_id, completed=False)

    def get_completed(self) -> list[Todo]:
        return [todo for todo in self._todos.values() if todo.completed]

    def get_pending(self) -> list[Todo]:
        return [todo for todo in self._todos.values() if not todo.completed]

    def clear(self) -> None:
        self._todos.clear()

    def __len__(self) -> int:
        return len(self._todos)
