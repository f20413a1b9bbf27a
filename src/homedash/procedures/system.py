"""
System namespace procedures.

- system.greeting: Liveness check returning a greeting
- system.list_procedures: Discovery of every registered procedure
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from homedash.routing import ProcedureKind, ProcedureRegistry

if TYPE_CHECKING:
    from homedash.context import ProcedureContext

DEFAULT_GREETING_NAME = "there"


class GreetingInput(BaseModel):
    name: str | None = Field(default=None, max_length=100)


async def handle_system_greeting(
    ctx: ProcedureContext,
    params: dict[str, Any],
) -> str:
    """Return "Hello <name>", or "Hello there" without a name."""
    return f"Hello {params.get('name') or DEFAULT_GREETING_NAME}"


async def handle_system_list_procedures(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    registry: ProcedureRegistry,
) -> list[dict[str, Any]]:
    return registry.describe()


def register_system_procedures(registry: ProcedureRegistry) -> None:
    registry.register(
        "system.greeting",
        handle_system_greeting,
        kind=ProcedureKind.QUERY,
        input_model=GreetingInput,
        description="Return a greeting",
    )
    registry.register(
        "system.list_procedures",
        partial(handle_system_list_procedures, registry=registry),
        kind=ProcedureKind.QUERY,
        description="List registered procedures with their kinds",
    )
