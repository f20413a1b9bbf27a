"""
Procedure routing for the dashboard RPC surface.

This module provides:
- ProcedureKind: query (read-only, cacheable), mutation, subscription
- ProcedureRegistry: maps "namespace.operation" names to handlers
- Input validation with pydantic before dispatch
- Handler dispatch with error wrapping
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from homedash.errors import InternalError, InvalidArgumentError, NotFoundError, ToolError
from homedash.logging import get_logger, procedure_logger

if TYPE_CHECKING:
    from homedash.context import ProcedureContext

logger = get_logger(__name__)

# Queries and mutations resolve to a value; subscriptions resolve to an
# async iterator of events.
ProcedureHandler = Callable[["ProcedureContext", dict[str, Any]], Awaitable[Any]]


class ProcedureKind(str, Enum):
    """How a procedure may be called."""

    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class Procedure:
    """
    A registered procedure.

    Attributes:
        name: Procedure name in "namespace.operation" format.
        kind: Query, mutation or subscription.
        handler: Async handler taking (ctx, params).
        input_model: Pydantic model validating params, or None for no input.
        description: One-line description for discovery.
    """

    name: str
    kind: ProcedureKind
    handler: ProcedureHandler
    input_model: type[BaseModel] | None = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "description": self.description,
        }


class ProcedureKindError(ToolError):
    """A procedure was called through a transport that does not serve its kind."""

    def __init__(self, procedure: Procedure) -> None:
        super().__init__(
            error_code="failed_precondition",
            message=(
                f"Procedure '{procedure.name}' is a {procedure.kind.value} "
                "and cannot be called this way"
            ),
            details={"procedure": procedure.name, "kind": procedure.kind.value},
        )


def _format_validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]) or None,
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


class ProcedureRegistry:
    """
    Registry mapping procedure names to handlers.

    Example:
        >>> registry = ProcedureRegistry()
        >>> registry.register("todo.get_all", handle_get_all)
        >>> result = await registry.invoke("todo.get_all", ctx, {})
    """

    def __init__(self) -> None:
        self._procedures: dict[str, Procedure] = {}

    def register(
        self,
        name: str,
        handler: ProcedureHandler,
        *,
        kind: ProcedureKind = ProcedureKind.QUERY,
        input_model: type[BaseModel] | None = None,
        description: str = "",
    ) -> Procedure:
        """
        Register a procedure.

        Args:
            name: Procedure name in "namespace.operation" format.
            handler: Async function handling the call.
            kind: Query, mutation or subscription.
            input_model: Optional pydantic model for the params object.
            description: One-line description.

        Returns:
            The registered Procedure.

        Raises:
            ValueError: If a procedure is already registered under ``name``.
        """
        if name in self._procedures:
            raise ValueError(f"Procedure '{name}' is already registered")
        procedure = Procedure(
            name=name,
            kind=ProcedureKind(kind),
            handler=handler,
            input_model=input_model,
            description=description,
        )
        self._procedures[name] = procedure
        return procedure

    def get(self, name: str) -> Procedure | None:
        return self._procedures.get(name)

    def require(self, name: str) -> Procedure:
        """
        Look up a procedure.

        Raises:
            NotFoundError: If no procedure is registered under ``name``.
        """
        procedure = self._procedures.get(name)
        if procedure is None:
            raise NotFoundError(
                f"Procedure '{name}' is not registered",
                details={"procedure": name},
            )
        return procedure

    def list_procedures(
        self,
        namespace: str | None = None,
        kind: ProcedureKind | None = None,
    ) -> list[str]:
        """List registered names, optionally filtered by namespace and kind."""
        return [
            name
            for name, procedure in self._procedures.items()
            if (namespace is None or name.startswith(f"{namespace}."))
            and (kind is None or procedure.kind == kind)
        ]

    def list_namespaces(self) -> list[str]:
        return sorted({name.split(".", 1)[0] for name in self._procedures})

    def describe(self) -> list[dict[str, Any]]:
        return [procedure.to_dict() for procedure in self._procedures.values()]

    def validate_params(self, procedure: Procedure, params: dict[str, Any]) -> dict[str, Any]:
        """
        Validate params against the procedure's input model.

        Returns:
            The validated params with defaults applied.

        Raises:
            InvalidArgumentError: If validation fails.
        """
        if procedure.input_model is None:
            return {}
        try:
            model = procedure.input_model.model_validate(params)
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Invalid input for '{procedure.name}'",
                details={"procedure": procedure.name, "errors": _format_validation_errors(e)},
            ) from e
        return model.model_dump()

    def _check_kind(
        self, procedure: Procedure, allowed_kinds: Iterable[ProcedureKind]
    ) -> None:
        if procedure.kind not in set(allowed_kinds):
            raise ProcedureKindError(procedure)

    async def invoke(
        self,
        name: str,
        ctx: ProcedureContext,
        params: dict[str, Any],
        *,
        allowed_kinds: Iterable[ProcedureKind] = (
            ProcedureKind.QUERY,
            ProcedureKind.MUTATION,
        ),
    ) -> Any:
        """
        Validate input and invoke a query or mutation.

        Args:
            name: Procedure name.
            ctx: ProcedureContext for the call.
            params: Raw params object.
            allowed_kinds: Kinds the calling transport serves.

        Returns:
            The handler's return value.

        Raises:
            ToolError: Unknown procedure, wrong kind, invalid input, or an
                error raised by the handler. Other exceptions are logged and
                replaced by InternalError without their message.
        """
        procedure = self.require(name)
        self._check_kind(procedure, allowed_kinds)
        validated = self.validate_params(procedure, params)

        try:
            return await procedure.handler(ctx, validated)
        except ToolError as e:
            if e.__cause__ is not None:
                procedure_logger(logger, ctx).warning(
                    "Procedure failed",
                    extra={"error_code": e.error_code, "cause": repr(e.__cause__)},
                )
            raise
        except Exception as e:
            procedure_logger(logger, ctx).exception(
                "Unexpected error in procedure",
                extra={"exception_type": type(e).__name__},
            )
            raise InternalError(
                message=f"Internal error in procedure '{name}'",
                details={"procedure": name},
            ) from e

    async def open_subscription(
        self,
        name: str,
        ctx: ProcedureContext,
        params: dict[str, Any],
    ) -> AsyncIterator[Any]:
        """
        Validate input and open a subscription stream.

        Returns:
            The async iterator produced by the handler.

        Raises:
            ToolError: Unknown procedure, not a subscription, or invalid input.
        """
        return await self.invoke(
            name, ctx, params, allowed_kinds=(ProcedureKind.SUBSCRIPTION,)
        )

    def __contains__(self, name: str) -> bool:
        return name in self._procedures

    def __len__(self) -> int:
        return len(self._procedures)
