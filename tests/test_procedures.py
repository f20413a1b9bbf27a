"""
Tests for the dashboard procedures bound to their services.

This test module validates:
- The full procedure catalogue and kinds
- System greeting and discovery
- Router procedures over a faked LuCI endpoint
- Todo procedures, including not_found for unknown ids
- Player procedures, and unavailable when the player is disabled
- Input validation happening before any handler runs
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest

from homedash.context import ProcedureContext
from homedash.errors import InvalidArgumentError, NotFoundError, UnavailableError
from homedash.events import Event
from homedash.procedures import create_registry
from homedash.routing import ProcedureKind, ProcedureRegistry
from homedash.services import DashboardServices

from conftest import FakePlayer, RouterStub


@pytest.fixture
def registry(services: DashboardServices) -> ProcedureRegistry:
    return create_registry(services)


async def call(registry: ProcedureRegistry, name: str, params: dict[str, Any] | None = None) -> Any:
    return await registry.invoke(name, ProcedureContext(procedure=name), params or {})


# =============================================================================
# Tests for the Catalogue
# =============================================================================


class TestCatalogue:
    """Tests for the registered procedure set."""

    def test_namespaces(self, registry: ProcedureRegistry) -> None:
        """Test that every namespace is present."""
        assert registry.list_namespaces() == ["player", "router", "system", "todo"]

    def test_kinds(self, registry: ProcedureRegistry) -> None:
        """Test a sample of procedure kinds."""
        kinds = {entry["name"]: entry["kind"] for entry in registry.describe()}

        assert kinds["router.get_system_status"] == "query"
        assert kinds["router.reboot"] == "mutation"
        assert kinds["todo.get_all"] == "query"
        assert kinds["todo.create"] == "mutation"
        assert kinds["player.get_duration"] == "query"
        assert kinds["player.load"] == "mutation"
        assert kinds["player.events"] == "subscription"

    def test_todo_operations(self, registry: ProcedureRegistry) -> None:
        """Test the todo namespace."""
        assert sorted(registry.list_procedures(namespace="todo")) == [
            "todo.clear",
            "todo.create",
            "todo.delete",
            "todo.get_all",
            "todo.get_by_id",
            "todo.get_completed",
            "todo.get_pending",
            "todo.mark_completed",
            "todo.mark_incomplete",
            "todo.update",
        ]


# =============================================================================
# Tests for System Procedures
# =============================================================================


class TestSystemProcedures:
    """Tests for system.* procedures."""

    @pytest.mark.asyncio
    async def test_greeting(self, registry: ProcedureRegistry) -> None:
        """Test the greeting with and without a name."""
        assert await call(registry, "system.greeting", {"name": "Ada"}) == "Hello Ada"
        assert await call(registry, "system.greeting") == "Hello there"

    @pytest.mark.asyncio
    async def test_list_procedures(self, registry: ProcedureRegistry) -> None:
        """Test that discovery lists itself."""
        names = [entry["name"] for entry in await call(registry, "system.list_procedures")]
        assert "system.list_procedures" in names
        assert len(names) == len(registry)


# =============================================================================
# Tests for Router Procedures
# =============================================================================


class TestRouterProcedures:
    """Tests for router.* procedures."""

    @pytest.mark.asyncio
    async def test_get_system_status(self, registry: ProcedureRegistry) -> None:
        """Test the status shape."""
        result = await call(registry, "router.get_system_status")

        assert result == {
            "uptime": 5025,
            "temperature": 37.0,
            "load": {"avg1": 0.12, "avg5": 0.34, "avg15": 0.56},
        }

    @pytest.mark.asyncio
    async def test_reboot(self, registry: ProcedureRegistry, router_stub: RouterStub) -> None:
        """Test that reboot calls sys.reboot."""
        assert await call(registry, "router.reboot") == {"success": True}
        assert ("sys", "reboot", []) in router_stub.calls

    @pytest.mark.asyncio
    async def test_is_process_running(
        self, registry: ProcedureRegistry, router_stub: RouterStub
    ) -> None:
        """Test that a zero pgrep status means running."""
        assert await call(registry, "router.is_process_running", {"process_name": "dnsmasq"})

        router_stub.results[("sys", "call", None)] = 1
        assert not await call(
            registry, "router.is_process_running", {"process_name": "dnsmasq"}
        )

    @pytest.mark.asyncio
    async def test_process_name_validated(
        self, registry: ProcedureRegistry, router_stub: RouterStub
    ) -> None:
        """Test that shell metacharacters never reach the router."""
        with pytest.raises(InvalidArgumentError):
            await call(registry, "router.is_process_running", {"process_name": "x; reboot"})

        assert router_stub.calls == []

    @pytest.mark.asyncio
    async def test_manage_initd_process(
        self, registry: ProcedureRegistry, router_stub: RouterStub
    ) -> None:
        """Test init.d management."""
        result = await call(
            registry,
            "router.manage_initd_process",
            {"process_name": "dropbear", "action": "enable"},
        )

        assert result == {"success": True, "process_name": "dropbear", "action": "enable"}
        assert ("sys", "init.enable", ["dropbear"]) in router_stub.calls

    @pytest.mark.asyncio
    async def test_manage_initd_invalid_action(self, registry: ProcedureRegistry) -> None:
        """Test that unknown actions fail validation."""
        with pytest.raises(InvalidArgumentError):
            await call(
                registry,
                "router.manage_initd_process",
                {"process_name": "dropbear", "action": "restart"},
            )


# =============================================================================
# Tests for Todo Procedures
# =============================================================================


class TestTodoProcedures:
    """Tests for todo.* procedures."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, registry: ProcedureRegistry) -> None:
        """Test creating a todo and reading it back."""
        created = await call(registry, "todo.create", {"title": "Buy milk"})

        assert created["title"] == "Buy milk"
        assert created["completed"] is False
        assert await call(registry, "todo.get_by_id", {"id": created["id"]}) == created
        assert await call(registry, "todo.get_all") == [created]

    @pytest.mark.asyncio
    async def test_create_requires_title(self, registry: ProcedureRegistry) -> None:
        """Test that an empty title is rejected."""
        with pytest.raises(InvalidArgumentError):
            await call(registry, "todo.create", {"title": ""})
        assert await call(registry, "todo.get_all") == []

    @pytest.mark.asyncio
    async def test_update_ignores_null_fields(self, registry: ProcedureRegistry) -> None:
        """Test that omitted fields keep their values."""
        created = await call(
            registry, "todo.create", {"title": "Call plumber", "description": "Kitchen sink"}
        )

        updated = await call(
            registry, "todo.update", {"id": created["id"], "completed": True}
        )

        assert updated["title"] == "Call plumber"
        assert updated["description"] == "Kitchen sink"
        assert updated["completed"] is True

    @pytest.mark.asyncio
    async def test_completion_filters(self, registry: ProcedureRegistry) -> None:
        """Test marking and filtering by completion."""
        first = await call(registry, "todo.create", {"title": "one"})
        second = await call(registry, "todo.create", {"title": "two"})

        await call(registry, "todo.mark_completed", {"id": first["id"]})
        assert [t["id"] for t in await call(registry, "todo.get_completed")] == [first["id"]]
        assert [t["id"] for t in await call(registry, "todo.get_pending")] == [second["id"]]

        await call(registry, "todo.mark_incomplete", {"id": first["id"]})
        assert await call(registry, "todo.get_completed") == []

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, registry: ProcedureRegistry) -> None:
        """Test deleting one todo and clearing all."""
        created = await call(registry, "todo.create", {"title": "one"})
        await call(registry, "todo.create", {"title": "two"})

        assert await call(registry, "todo.delete", {"id": created["id"]}) == {"success": True}
        assert len(await call(registry, "todo.get_all")) == 1

        assert await call(registry, "todo.clear") == {"success": True}
        assert await call(registry, "todo.get_all") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("procedure", "params"),
        [
            ("todo.get_by_id", {"id": "missing"}),
            ("todo.update", {"id": "missing", "title": "x"}),
            ("todo.delete", {"id": "missing"}),
            ("todo.mark_completed", {"id": "missing"}),
            ("todo.mark_incomplete", {"id": "missing"}),
        ],
    )
    async def test_unknown_id(
        self, registry: ProcedureRegistry, procedure: str, params: dict[str, Any]
    ) -> None:
        """Test that unknown ids raise not_found."""
        with pytest.raises(NotFoundError, match="Todo with id missing not found"):
            await call(registry, procedure, params)


# =============================================================================
# Tests for Player Procedures
# =============================================================================


class TestPlayerProcedures:
    """Tests for player.* procedures."""

    @pytest.mark.asyncio
    async def test_load_defaults(
        self, registry: ProcedureRegistry, fake_player: FakePlayer
    ) -> None:
        """Test that load applies the default mode."""
        assert await call(registry, "player.load", {"content": "song.mp3"}) == {
            "success": True
        }
        assert fake_player.calls[-1] == ("load", ("song.mp3", "replace", None))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "procedure",
        [
            "player.play",
            "player.pause",
            "player.toggle_pause",
            "player.stop",
            "player.next",
            "player.prev",
        ],
    )
    async def test_simple_mutations(
        self, registry: ProcedureRegistry, fake_player: FakePlayer, procedure: str
    ) -> None:
        """Test mutations without input."""
        assert await call(registry, procedure) == {"success": True}
        assert fake_player.calls[-1][0] == procedure.split(".", 1)[1]

    @pytest.mark.asyncio
    async def test_volume(self, registry: ProcedureRegistry, fake_player: FakePlayer) -> None:
        """Test volume and its range check."""
        assert await call(registry, "player.volume", {"level": 40}) == {
            "success": True,
            "level": 40,
        }

        with pytest.raises(InvalidArgumentError):
            await call(registry, "player.volume", {"level": 101})
        assert fake_player.calls == [("volume", (40,))]

    @pytest.mark.asyncio
    async def test_mute(self, registry: ProcedureRegistry, fake_player: FakePlayer) -> None:
        """Test toggling and setting mute."""
        await call(registry, "player.mute")
        await call(registry, "player.mute", {"flag": True})

        assert fake_player.calls == [("mute", (None,)), ("mute", (True,))]

    @pytest.mark.asyncio
    async def test_queries(self, registry: ProcedureRegistry) -> None:
        """Test the player queries."""
        assert await call(registry, "player.get_duration") == 215.5
        assert await call(registry, "player.get_property", {"name": "volume"}) == 50.0
        assert await call(
            registry, "player.get_all_properties", {"names": ["volume", "pause"]}
        ) == {"volume": 50.0, "pause": False}
        assert await call(registry, "player.is_running") is True

    @pytest.mark.asyncio
    async def test_events_stream(
        self, registry: ProcedureRegistry, services: DashboardServices
    ) -> None:
        """Test that the event stream yields broker events of the chosen kinds."""
        ctx = ProcedureContext(procedure="player.events")
        stream = await registry.open_subscription("player.events", ctx, {"kinds": ["paused"]})

        assert services.broker.subscriber_count("paused") == 1
        assert ctx.metadata["subscription"]

        services.broker.publish(Event("resumed"))
        services.broker.publish(Event("paused", {"at": 3}))
        event = await anext(stream)
        await stream.aclose()

        assert event["kind"] == "paused"
        assert event["data"] == {"at": 3}
        assert services.broker.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_events_cancel_without_iterating(
        self, registry: ProcedureRegistry, services: DashboardServices
    ) -> None:
        """Test that the context's cancel detaches a stream that never ran."""
        ctx = ProcedureContext(procedure="player.events")
        stream = await registry.open_subscription("player.events", ctx, {})
        assert services.broker.subscriber_count() == 1

        ctx.metadata["cancel"]()
        ctx.metadata["cancel"]()

        assert services.broker.subscriber_count() == 0
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_events_unknown_kind(self, registry: ProcedureRegistry) -> None:
        """Test that unknown event kinds fail validation."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await registry.open_subscription(
                "player.events",
                ProcedureContext(procedure="player.events"),
                {"kinds": ["exploded"]},
            )
        assert "exploded" in str(exc_info.value.details)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("procedure", "params"),
        [
            ("player.play", {}),
            ("player.volume", {"level": 10}),
            ("player.get_duration", {}),
            ("player.is_running", {}),
        ],
    )
    async def test_player_disabled(
        self, services: DashboardServices, procedure: str, params: dict[str, Any]
    ) -> None:
        """Test that every player procedure is unavailable when disabled."""
        registry = create_registry(replace(services, player=None))

        with pytest.raises(UnavailableError, match="Player is disabled"):
            await call(registry, procedure, params)

    @pytest.mark.asyncio
    async def test_events_disabled(self, services: DashboardServices) -> None:
        """Test that subscribing to a disabled player is unavailable."""
        registry = create_registry(replace(services, player=None))

        with pytest.raises(UnavailableError):
            await registry.open_subscription(
                "player.events", ProcedureContext(procedure="player.events"), {}
            )
        assert services.broker.subscriber_count() == 0

    def test_subscription_kind(self, registry: ProcedureRegistry) -> None:
        """Test that player.events is the only subscription."""
        assert registry.list_procedures(kind=ProcedureKind.SUBSCRIPTION) == ["player.events"]
