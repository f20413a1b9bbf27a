"""
Player namespace procedures.

Mutations drive mpv (load, play, pause, toggle_pause, stop, next, prev,
volume, mute); queries read its state; ``player.events`` streams lifecycle
events. Every procedure answers unavailable when the player is disabled.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from functools import partial
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, field_validator

from homedash.errors import UnavailableError
from homedash.routing import ProcedureKind, ProcedureRegistry
from homedash.services.player import PLAYER_EVENT_KINDS

if TYPE_CHECKING:
    from homedash.context import ProcedureContext
    from homedash.events import EventBroker, Subscription
    from homedash.services.player import PlayerService


class LoadInput(BaseModel):
    content: str = Field(min_length=1)
    mode: Literal["replace", "append", "append-play"] = "replace"
    options: dict[str, str | int | float | bool] | None = None


class VolumeInput(BaseModel):
    level: float = Field(ge=0, le=100)


class MuteInput(BaseModel):
    flag: bool | None = None


class PropertyInput(BaseModel):
    name: str = Field(min_length=1, max_length=64)


class PropertiesInput(BaseModel):
    names: list[str] = Field(min_length=1, max_length=32)


class EventsInput(BaseModel):
    kinds: list[str] | None = None

    @field_validator("kinds")
    @classmethod
    def validate_kinds(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        unknown = sorted(set(v) - set(PLAYER_EVENT_KINDS))
        if unknown:
            raise ValueError(
                f"Unknown event kinds: {', '.join(unknown)}. "
                f"Must be among: {', '.join(PLAYER_EVENT_KINDS)}"
            )
        return v


def _require_player(player: PlayerService | None) -> PlayerService:
    if player is None:
        raise UnavailableError(
            "Player is disabled",
            details={"setting": "player.enabled"},
        )
    return player


# =============================================================================
# Mutations
# =============================================================================


async def handle_player_load(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    player: PlayerService | None,
) -> dict[str, Any]:
    """
    Handle player.load.

    Args:
        ctx: The ProcedureContext for this request.
        params: Validated parameters:
            - content: File path or URL
            - mode: replace (default), append or append-play
            - options: Optional per-file mpv options
        player: Playback facade, or None when disabled.
    """
    await _require_player(player).load(
        params["content"], params["mode"], params.get("options")
    )
    return {"success": True}


async def handle_player_play(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).play()
    return {"success": True}


async def handle_player_pause(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).pause()
    return {"success": True}


async def handle_player_toggle_pause(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).toggle_pause()
    return {"success": True}


async def handle_player_stop(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).stop()
    return {"success": True}


async def handle_player_next(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).next()
    return {"success": True}


async def handle_player_prev(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).prev()
    return {"success": True}


async def handle_player_volume(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    await _require_player(player).volume(params["level"])
    return {"success": True, "level": params["level"]}


async def handle_player_mute(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    """Set mute to ``flag``, or toggle it when ``flag`` is omitted."""
    await _require_player(player).mute(params.get("flag"))
    return {"success": True}


# =============================================================================
# Queries
# =============================================================================


async def handle_player_get_duration(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> float | None:
    return await _require_player(player).get_duration()


async def handle_player_get_property(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> Any:
    return await _require_player(player).get_property(params["name"])


async def handle_player_get_all_properties(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> dict[str, Any]:
    return await _require_player(player).get_all_properties(params["names"])


async def handle_player_is_running(
    ctx: ProcedureContext, params: dict[str, Any], *, player: PlayerService | None
) -> bool:
    return _require_player(player).is_running()


# =============================================================================
# Subscriptions
# =============================================================================


async def _stream_events(subscription: Subscription) -> AsyncIterator[dict[str, Any]]:
    async with subscription:
        async for event in subscription:
            yield event.to_dict()


async def handle_player_events(
    ctx: ProcedureContext,
    params: dict[str, Any],
    *,
    player: PlayerService | None,
    broker: EventBroker,
) -> AsyncIterator[dict[str, Any]]:
    """
    Handle player.events.

    The subscription is attached before this returns, so no event published
    after the subscribe acknowledgement is missed. Its ``cancel`` is left in
    ``ctx.metadata`` so the transport can detach it even if the returned
    stream is never iterated.

    Returns:
        Async iterator of event dictionaries ({kind, data, timestamp}).
    """
    _require_player(player)
    subscription = broker.subscribe(params.get("kinds"))
    ctx.metadata["subscription"] = subscription.id
    ctx.metadata["cancel"] = subscription.cancel
    return _stream_events(subscription)


_MUTATIONS = (
    ("player.load", handle_player_load, LoadInput, "Load a file or URL"),
    ("player.play", handle_player_play, None, "Resume playback"),
    ("player.pause", handle_player_pause, None, "Pause playback"),
    ("player.toggle_pause", handle_player_toggle_pause, None, "Toggle pause"),
    ("player.stop", handle_player_stop, None, "Stop playback"),
    ("player.next", handle_player_next, None, "Skip to the next playlist entry"),
    ("player.prev", handle_player_prev, None, "Go to the previous playlist entry"),
    ("player.volume", handle_player_volume, VolumeInput, "Set the volume (0-100)"),
    ("player.mute", handle_player_mute, MuteInput, "Set or toggle mute"),
)

_QUERIES = (
    ("player.get_duration", handle_player_get_duration, None, "Duration of the current file"),
    ("player.get_property", handle_player_get_property, PropertyInput, "Read an mpv property"),
    (
        "player.get_all_properties",
        handle_player_get_all_properties,
        PropertiesInput,
        "Read several mpv properties",
    ),
    ("player.is_running", handle_player_is_running, None, "Whether the mpv process runs"),
)


def register_player_procedures(
    registry: ProcedureRegistry,
    player: PlayerService | None,
    broker: EventBroker,
) -> None:
    for kind, procedures in (
        (ProcedureKind.MUTATION, _MUTATIONS),
        (ProcedureKind.QUERY, _QUERIES),
    ):
        for name, handler, input_model, description in procedures:
            registry.register(
                name,
                partial(handler, player=player),
                kind=kind,
                input_model=input_model,
                description=description,
            )

    registry.register(
        "player.events",
        partial(handle_player_events, player=player, broker=broker),
        kind=ProcedureKind.SUBSCRIPTION,
        input_model=EventsInput,
        description="Stream player lifecycle events",
    )
