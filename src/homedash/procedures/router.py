"""
Router namespace procedures.

- router.get_system_status: Uptime, temperature and load average
- router.reboot: Reboot the router
- router.is_process_running: Whether a named process is running
- router.manage_initd_process: Start, stop, enable or disable an init.d service
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from homedash.logging import get_logger
from homedash.routing import ProcedureKind, ProcedureRegistry

if TYPE_CHECKING:
    from homedash.context import ProcedureContext
    from homedash.services.device import RouterService

logger = get_logger(__name__)

# Names reach the router's shell; keep them to plain identifiers
PROCESS_NAME_PATTERN = r"^[A-Za-z0-9._-]+$"


class ProcessInput(BaseModel):
    process_name: str = Field(min_length=1, max_length=64, pattern=PROCESS_NAME_PATTERN)


class InitdInput(BaseModel):
    process_name: str = Field(min_length=1, max_length=64, pattern=PROCESS_NAME_PATTERN)
    action: Literal["start", "stop", "enable", "disable"]


# =============================================================================
# Handlers
# =============================================================================


async def handle_router_get_system_status(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    router: RouterService,
) -> dict[str, Any]:
    """
    Handle router.get_system_status.

    Returns:
        Dictionary with:
        - uptime: Seconds since boot
        - temperature: Degrees Celsius
        - load: {avg1, avg5, avg15}
    """
    status = await router.get_system_status()
    return status.to_dict()


async def handle_router_reboot(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    router: RouterService,
) -> dict[str, Any]:
    logger.info(
        "Router reboot requested",
        extra={"client_host": ctx.client_host, "transport": ctx.transport},
    )
    await router.reboot_router()
    return {"success": True}


async def handle_router_is_process_running(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    router: RouterService,
) -> bool:
    return await router.is_process_running(params["process_name"])


async def handle_router_manage_initd_process(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    router: RouterService,
) -> dict[str, Any]:
    """
    Handle router.manage_initd_process.

    Args:
        ctx: The ProcedureContext for this request.
        params: Validated parameters:
            - process_name: init.d script name
            - action: start, stop, enable or disable
        router: Router facade.

    Returns:
        Dictionary with success, process_name and action.
    """
    process_name = params["process_name"]
    action = params["action"]
    await router.manage_initd_process(process_name, action)
    return {"success": True, "process_name": process_name, "action": action}


def register_router_procedures(registry: ProcedureRegistry, router: RouterService) -> None:
    registry.register(
        "router.get_system_status",
        partial(handle_router_get_system_status, router=router),
        kind=ProcedureKind.QUERY,
        description="Fetch uptime, temperature and load average",
    )
    registry.register(
        "router.reboot",
        partial(handle_router_reboot, router=router),
        kind=ProcedureKind.MUTATION,
        description="Reboot the router",
    )
    registry.register(
        "router.is_process_running",
        partial(handle_router_is_process_running, router=router),
        kind=ProcedureKind.QUERY,
        input_model=ProcessInput,
        description="Check whether a process is running on the router",
    )
    registry.register(
        "router.manage_initd_process",
        partial(handle_router_manage_initd_process, router=router),
        kind=ProcedureKind.MUTATION,
        input_model=InitdInput,
        description="Start, stop, enable or disable an init.d service",
    )
