"""
Per-call context for dashboard procedures.

A ProcedureContext is built by the transport for every incoming call and
passed to the handler along with the validated parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from homedash.protocol import JSONRPCRequest


@dataclass
class ProcedureContext:
    """
    Encapsulates the context of a single procedure call.

    Attributes:
        procedure: Full procedure name (e.g., "todo.create").
        request_id: JSON-RPC request id (None for notifications).
        transport: "http", "ws" or "internal".
        client_host: Remote address of the dashboard, when known.
        timestamp: When the request was received (UTC).
        metadata: Additional transport details (e.g., subscription id).
    """

    procedure: str
    request_id: str | int | None = None
    transport: str = "internal"
    client_host: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        """The namespace part (e.g., "todo" from "todo.create")."""
        return self.procedure.split(".", 1)[0]

    @property
    def operation(self) -> str:
        """The operation part (e.g., "create" from "todo.create")."""
        parts = self.procedure.split(".", 1)
        return parts[1] if len(parts) > 1 else parts[0]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging."""
        return {
            "procedure": self.procedure,
            "request_id": self.request_id,
            "transport": self.transport,
            "client_host": self.client_host,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_request(
        cls,
        request: JSONRPCRequest,
        *,
        transport: str = "internal",
        client_host: str | None = None,
    ) -> ProcedureContext:
        """
        Create a context from a parsed JSON-RPC request.

        Args:
            request: The parsed request.
            transport: Transport the request arrived on.
            client_host: Remote address of the caller.

        Returns:
            New ProcedureContext.
        """
        return cls(
            procedure=request.method,
            request_id=request.id,
            transport=transport,
            client_host=client_host,
        )
