"""
Pytest configuration and shared fakes for the home dashboard tests.
"""

from __future__ import annotations

import base64
import json
from typing import Any

import httpx
import pytest

from homedash.config import AppConfig, DeviceConfig, PlayerConfig
from homedash.device import DeviceClient
from homedash.events import EventBroker
from homedash.services import DashboardServices, RouterService, TodoStore
from homedash.services.device import LOADAVG_PATH, THERMAL_ZONE_PATH

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that talk to a local fake mpv over a Unix socket",
    )


# =============================================================================
# Router
# =============================================================================


def _b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class RouterStub:
    """
    httpx.MockTransport handler answering LuCI RPC calls.

    Results are keyed by (group, method, first param); unknown calls answer
    with a null result.
    """

    def __init__(self) -> None:
        self.results: dict[tuple[str, str, Any], Any] = {
            ("sys", "uptime", None): 5025,
            ("fs", "readfile", THERMAL_ZONE_PATH): _b64("37000\n"),
            ("fs", "readfile", LOADAVG_PATH): _b64("0.12 0.34 0.56 2/150 1234\n"),
            ("sys", "call", None): 0,
        }
        self.calls: list[tuple[str, str, list[Any]]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        group = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        params = body.get("params") or []

        if group == "auth":
            return httpx.Response(200, json={"id": body["id"], "result": "tok", "error": None})

        self.calls.append((group, body["method"], params))
        key = (group, body["method"], params[0] if params else None)
        if key not in self.results and group == "sys" and body["method"] == "call":
            key = ("sys", "call", None)
        return httpx.Response(
            200, json={"id": body["id"], "result": self.results.get(key), "error": None}
        )


# =============================================================================
# Player
# =============================================================================


class FakePlayer:
    """Records playback calls instead of driving mpv."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.properties: dict[str, Any] = {"volume": 50.0, "pause": False}
        self.running = True
        self.closed = False

    async def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    async def load(self, content: str, mode: str = "replace", options: Any = None) -> None:
        await self._record("load", content, mode, options)

    async def play(self) -> None:
        await self._record("play")

    async def pause(self) -> None:
        await self._record("pause")

    async def toggle_pause(self) -> None:
        await self._record("toggle_pause")

    async def stop(self) -> None:
        await self._record("stop")

    async def next(self) -> None:
        await self._record("next")

    async def prev(self) -> None:
        await self._record("prev")

    async def volume(self, level: float) -> None:
        await self._record("volume", level)

    async def mute(self, flag: bool | None = None) -> None:
        await self._record("mute", flag)

    async def get_duration(self) -> float | None:
        return 215.5

    async def get_property(self, name: str) -> Any:
        return self.properties.get(name)

    async def get_all_properties(self, names: list[str]) -> dict[str, Any]:
        return {name: self.properties.get(name) for name in names}

    def is_running(self) -> bool:
        return self.running

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def router_stub() -> RouterStub:
    return RouterStub()


@pytest.fixture
def fake_player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        device=DeviceConfig(password="secret"),
        player=PlayerConfig(enabled=False),
    )


@pytest.fixture
def services(
    router_stub: RouterStub, fake_player: FakePlayer, app_config: AppConfig
) -> DashboardServices:
    """Real router, todo and broker services with a faked router and player."""
    device_client = DeviceClient.from_config(
        app_config.device,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(router_stub.handler)),
    )
    return DashboardServices(
        device_client=device_client,
        router=RouterService(device_client),
        todos=TodoStore(),
        broker=EventBroker(),
        player=fake_player,  # type: ignore[arg-type]
    )
