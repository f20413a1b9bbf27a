"""
Tests for the routing module (ProcedureRegistry).

This test module validates:
- Procedure registration and discovery
- Kind enforcement for queries, mutations and subscriptions
- Input validation before dispatch
- Error handling during dispatch
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
from pydantic import BaseModel, Field

from homedash.context import ProcedureContext
from homedash.errors import InternalError, InvalidArgumentError, NotFoundError
from homedash.routing import ProcedureKind, ProcedureKindError, ProcedureRegistry

# =============================================================================
# Helper Functions for Tests
# =============================================================================


class EchoInput(BaseModel):
    text: str = Field(min_length=1)
    repeat: int = 1


async def echo_handler(ctx: ProcedureContext, params: dict[str, Any]) -> dict[str, Any]:
    """A handler that echoes parameters."""
    return {"procedure": ctx.procedure, "params": params}


async def not_found_handler(ctx: ProcedureContext, params: dict[str, Any]) -> None:
    """A handler that raises a ToolError."""
    raise NotFoundError("Todo with id 1 not found", details={"id": "1"})


async def exception_handler(ctx: ProcedureContext, params: dict[str, Any]) -> None:
    """A handler that raises a non-ToolError exception."""
    raise RuntimeError("database password is hunter2")


async def ticker_handler(
    ctx: ProcedureContext, params: dict[str, Any]
) -> AsyncIterator[int]:
    """A subscription handler yielding three values."""

    async def _ticks() -> AsyncIterator[int]:
        for i in range(3):
            yield i

    return _ticks()


@pytest.fixture
def registry() -> ProcedureRegistry:
    registry = ProcedureRegistry()
    registry.register("demo.echo", echo_handler, input_model=EchoInput)
    registry.register("demo.raw", echo_handler)
    registry.register("demo.missing", not_found_handler, kind=ProcedureKind.MUTATION)
    registry.register("demo.broken", exception_handler, kind=ProcedureKind.MUTATION)
    registry.register(
        "ticks.stream",
        ticker_handler,
        kind=ProcedureKind.SUBSCRIPTION,
        description="Count to three",
    )
    return registry


def make_ctx(procedure: str) -> ProcedureContext:
    return ProcedureContext(procedure=procedure)


# =============================================================================
# Tests for Registration
# =============================================================================


class TestRegistration:
    """Tests for registering and discovering procedures."""

    def test_empty_registry(self) -> None:
        """Test creating an empty registry."""
        assert len(ProcedureRegistry()) == 0

    def test_register(self, registry: ProcedureRegistry) -> None:
        """Test that registered names are present."""
        assert "demo.echo" in registry
        assert "demo.nope" not in registry
        assert len(registry) == 5

    def test_default_kind_is_query(self, registry: ProcedureRegistry) -> None:
        """Test the default kind."""
        procedure = registry.get("demo.echo")
        assert procedure is not None
        assert procedure.kind == ProcedureKind.QUERY

    def test_duplicate_registration(self, registry: ProcedureRegistry) -> None:
        """Test that registering a name twice is rejected."""
        with pytest.raises(ValueError, match="already registered"):
            registry.register("demo.echo", echo_handler)

    def test_require_unknown(self, registry: ProcedureRegistry) -> None:
        """Test that require raises NotFoundError."""
        with pytest.raises(NotFoundError):
            registry.require("demo.nope")

    def test_list_procedures_filters(self, registry: ProcedureRegistry) -> None:
        """Test filtering by namespace and kind."""
        assert registry.list_procedures(namespace="ticks") == ["ticks.stream"]
        assert registry.list_procedures(kind=ProcedureKind.MUTATION) == [
            "demo.missing",
            "demo.broken",
        ]
        assert registry.list_procedures(namespace="demo", kind=ProcedureKind.QUERY) == [
            "demo.echo",
            "demo.raw",
        ]

    def test_list_namespaces(self, registry: ProcedureRegistry) -> None:
        """Test namespace discovery."""
        assert registry.list_namespaces() == ["demo", "ticks"]

    def test_describe(self, registry: ProcedureRegistry) -> None:
        """Test the discovery payload."""
        described = {entry["name"]: entry for entry in registry.describe()}
        assert described["ticks.stream"] == {
            "name": "ticks.stream",
            "kind": "subscription",
            "description": "Count to three",
        }


# =============================================================================
# Tests for Invocation
# =============================================================================


class TestInvoke:
    """Tests for validating and invoking procedures."""

    @pytest.mark.asyncio
    async def test_invoke_validates_and_applies_defaults(
        self, registry: ProcedureRegistry
    ) -> None:
        """Test that validated params (with defaults) reach the handler."""
        result = await registry.invoke("demo.echo", make_ctx("demo.echo"), {"text": "hi"})

        assert result == {"procedure": "demo.echo", "params": {"text": "hi", "repeat": 1}}

    @pytest.mark.asyncio
    async def test_invoke_without_model_drops_params(
        self, registry: ProcedureRegistry
    ) -> None:
        """Test that procedures without input receive an empty params dict."""
        result = await registry.invoke("demo.raw", make_ctx("demo.raw"), {"stray": 1})
        assert result["params"] == {}

    @pytest.mark.asyncio
    async def test_invalid_input(self, registry: ProcedureRegistry) -> None:
        """Test that validation failures raise InvalidArgumentError with field errors."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await registry.invoke("demo.echo", make_ctx("demo.echo"), {"text": ""})

        details = exc_info.value.details
        assert details["procedure"] == "demo.echo"
        assert details["errors"][0]["field"] == "text"

    @pytest.mark.asyncio
    async def test_unknown_procedure(self, registry: ProcedureRegistry) -> None:
        """Test invoking an unknown name."""
        with pytest.raises(NotFoundError):
            await registry.invoke("demo.nope", make_ctx("demo.nope"), {})

    @pytest.mark.asyncio
    async def test_tool_error_propagates(self, registry: ProcedureRegistry) -> None:
        """Test that ToolErrors raised by handlers are passed through."""
        with pytest.raises(NotFoundError, match="Todo with id 1 not found"):
            await registry.invoke("demo.missing", make_ctx("demo.missing"), {})

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self, registry: ProcedureRegistry) -> None:
        """Test that other exceptions become InternalError without their message."""
        with pytest.raises(InternalError) as exc_info:
            await registry.invoke("demo.broken", make_ctx("demo.broken"), {})

        assert "hunter2" not in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_subscription_not_invokable(self, registry: ProcedureRegistry) -> None:
        """Test that a subscription cannot be invoked as a call."""
        with pytest.raises(ProcedureKindError) as exc_info:
            await registry.invoke("ticks.stream", make_ctx("ticks.stream"), {})

        assert exc_info.value.error_code == "failed_precondition"
        assert exc_info.value.details["kind"] == "subscription"

    @pytest.mark.asyncio
    async def test_allowed_kinds(self, registry: ProcedureRegistry) -> None:
        """Test restricting a transport to queries."""
        with pytest.raises(ProcedureKindError):
            await registry.invoke(
                "demo.missing",
                make_ctx("demo.missing"),
                {},
                allowed_kinds=(ProcedureKind.QUERY,),
            )


class TestSubscriptions:
    """Tests for opening subscription streams."""

    @pytest.mark.asyncio
    async def test_open_subscription(self, registry: ProcedureRegistry) -> None:
        """Test that open_subscription returns the handler's iterator."""
        stream = await registry.open_subscription("ticks.stream", make_ctx("ticks.stream"), {})
        assert [value async for value in stream] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_open_subscription_rejects_queries(
        self, registry: ProcedureRegistry
    ) -> None:
        """Test that queries cannot be subscribed to."""
        with pytest.raises(ProcedureKindError):
            await registry.open_subscription("demo.raw", make_ctx("demo.raw"), {})
