"""
Tests for ProcedureContext.

This test module validates:
- Default values
- Namespace and operation parsing
- Construction from a parsed request
"""

from __future__ import annotations

from homedash.context import ProcedureContext
from homedash.protocol import parse_request


class TestProcedureContext:
    """Tests for the ProcedureContext dataclass."""

    def test_defaults(self) -> None:
        """Test default values."""
        ctx = ProcedureContext(procedure="todo.get_all")

        assert ctx.request_id is None
        assert ctx.transport == "internal"
        assert ctx.client_host is None
        assert ctx.metadata == {}
        assert ctx.timestamp.tzinfo is not None

    def test_namespace_and_operation(self) -> None:
        """Test splitting the procedure name."""
        ctx = ProcedureContext(procedure="router.manage_initd_process")

        assert ctx.namespace == "router"
        assert ctx.operation == "manage_initd_process"

    def test_name_without_namespace(self) -> None:
        """Test a name without a dot."""
        ctx = ProcedureContext(procedure="ping")

        assert ctx.namespace == "ping"
        assert ctx.operation == "ping"

    def test_from_request(self) -> None:
        """Test building a context from a parsed request."""
        request = parse_request('{"jsonrpc": "2.0", "id": 4, "method": "player.pause"}')

        ctx = ProcedureContext.from_request(request, transport="ws", client_host="10.0.0.5")

        assert ctx.procedure == "player.pause"
        assert ctx.request_id == 4
        assert ctx.transport == "ws"
        assert ctx.client_host == "10.0.0.5"

    def test_to_dict(self) -> None:
        """Test the logging representation."""
        ctx = ProcedureContext(procedure="todo.create", request_id="r1", transport="http")

        data = ctx.to_dict()

        assert data["procedure"] == "todo.create"
        assert data["request_id"] == "r1"
        assert data["transport"] == "http"
        assert isinstance(data["timestamp"], str)
