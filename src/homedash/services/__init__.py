"""
Services behind the dashboard procedures.

Modules:
- device: Router facade (status, reboot, processes, init.d)
- player: mpv playback facade and lifecycle events
- todos: In-memory todo store

Services are constructed once at startup by ``build_services`` and handed to
the procedure registry; nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from homedash.device.client import DeviceClient
from homedash.events import EventBroker
from homedash.logging import get_logger
from homedash.services.device import RouterService
from homedash.services.player import PlayerService, ProcessSpawner
from homedash.services.todos import TodoStore

if TYPE_CHECKING:
    from homedash.config import AppConfig

logger = get_logger(__name__)


@dataclass
class DashboardServices:
    """
    Explicitly owned service instances.

    Attributes:
        device_client: Router RPC client (owned; closed by ``aclose``).
        router: Router facade.
        todos: Todo store.
        broker: Event channels for server-push procedures.
        player: Playback facade, or None when the player is disabled.
    """

    device_client: DeviceClient
    router: RouterService
    todos: TodoStore
    broker: EventBroker
    player: PlayerService | None = None

    async def aclose(self) -> None:
        """Stop the player, end subscriptions and close the HTTP client."""
        try:
            if self.player is not None:
                await self.player.close()
        finally:
            self.broker.close()
            await self.device_client.aclose()


def build_services(
    config: AppConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    player_spawner: ProcessSpawner | None = None,
) -> DashboardServices:
    """
    Construct all services from configuration.

    Args:
        config: Application configuration.
        http_client: Optional httpx client for the router (tests).
        player_spawner: Optional mpv process spawner (tests).

    Returns:
        DashboardServices ready to be bound to procedures.
    """
    device = config.device
    if device.password is None:
        logger.warning(
            "Router password is not configured; router procedures will fail",
            extra={"base_url": device.base_url},
        )

    device_client = DeviceClient.from_config(device, http_client=http_client)
    broker = EventBroker()
    player = (
        PlayerService.from_config(config.player, broker, spawner=player_spawner)
        if config.player.enabled
        else None
    )

    return DashboardServices(
        device_client=device_client,
        router=RouterService(device_client),
        todos=TodoStore(),
        broker=broker,
        player=player,
    )


__all__ = [
    "DashboardServices",
    "PlayerService",
    "RouterService",
    "TodoStore",
    "build_services",
]
