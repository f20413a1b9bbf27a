"""
Dashboard procedures organized by namespace.

Modules:
- system: Greeting and procedure discovery
- router: Router status, reboot, process checks, init.d services
- todos: Todo CRUD
- player: Media playback and player events
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from homedash.procedures.player import register_player_procedures
from homedash.procedures.router import register_router_procedures
from homedash.procedures.system import register_system_procedures
from homedash.procedures.todos import register_todo_procedures
from homedash.routing import ProcedureRegistry

if TYPE_CHECKING:
    from homedash.services import DashboardServices


def register_procedures(
    registry: ProcedureRegistry,
    services: DashboardServices,
) -> ProcedureRegistry:
    """
    Bind every procedure to its service instance.

    Args:
        registry: Registry to populate.
        services: Services built at startup.

    Returns:
        The populated registry.
    """
    register_system_procedures(registry)
    register_router_procedures(registry, services.router)
    register_todo_procedures(registry, services.todos)
    register_player_procedures(registry, services.player, services.broker)
    return registry


def create_registry(services: DashboardServices) -> ProcedureRegistry:
    """Create a registry with every dashboard procedure registered."""
    return register_procedures(ProcedureRegistry(), services)


__all__ = [
    "create_registry",
    "register_procedures",
]
