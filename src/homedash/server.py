"""
HTTP and WebSocket server for the home dashboard.

Transports:
- POST /rpc: JSON-RPC 2.0 request or batch (queries and mutations)
- GET /rpc/{procedure}?input=<json>: queries only
- WS /ws: JSON-RPC 2.0 messages, including subscriptions streamed as
  ``subscription.event`` notifications
- GET /health: liveness and procedure count

Every transport funnels into the same ProcedureRegistry; errors are mapped
to JSON-RPC error objects by homedash.protocol.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import AsyncGenerator, Callable, Iterable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from homedash import __version__
from homedash.config import load_config
from homedash.context import ProcedureContext
from homedash.errors import InvalidArgumentError, NotFoundError, ToolError
from homedash.logging import get_logger, procedure_logger, setup_logging
from homedash.procedures import create_registry
from homedash.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SUBSCRIPTION_EVENT_METHOD,
    JSONRPCError,
    JSONRPCRequest,
    create_internal_error,
    create_invalid_request_error,
    create_method_not_found_error,
    decode_json,
    format_error_response,
    format_notification,
    format_success_response,
    parse_request_object,
    tool_error_to_jsonrpc_error,
)
from homedash.routing import ProcedureKind, ProcedureKindError, ProcedureRegistry
from homedash.services import DashboardServices, build_services

if TYPE_CHECKING:
    from homedash.config import AppConfig

logger = get_logger(__name__)

SUBSCRIPTION_STOP_METHOD = "subscription.stop"

CALL_KINDS = (ProcedureKind.QUERY, ProcedureKind.MUTATION)

# HTTP status for GET /rpc errors; POST /rpc always answers 200
HTTP_STATUS_BY_RPC_CODE = {
    PARSE_ERROR: 400,
    INVALID_REQUEST: 400,
    METHOD_NOT_FOUND: 404,
    INVALID_PARAMS: 400,
    -32003: 404,
    -32004: 405,
    -32006: 503,
}


# =============================================================================
# Request Processing
# =============================================================================


def _to_jsonrpc_error(exc: Exception, request_id: str | int | None) -> JSONRPCError:
    if isinstance(exc, JSONRPCError):
        return exc
    if isinstance(exc, ProcedureKindError):
        return create_invalid_request_error(exc.message)
    if isinstance(exc, ToolError):
        return tool_error_to_jsonrpc_error(exc)
    logger.exception(
        "Unexpected error processing request",
        extra={"request_id": request_id, "exception_type": type(exc).__name__},
    )
    return create_internal_error("Internal server error")


async def dispatch_request(
    data: Any,
    registry: ProcedureRegistry,
    *,
    transport: str = "internal",
    client_host: str | None = None,
    allowed_kinds: Iterable[ProcedureKind] = CALL_KINDS,
) -> dict[str, Any] | None:
    """
    Process one decoded JSON-RPC request object.

    Args:
        data: Decoded request object.
        registry: ProcedureRegistry with registered handlers.
        transport: Transport name recorded in the context.
        client_host: Remote address of the caller.
        allowed_kinds: Procedure kinds this transport serves.

    Returns:
        Response dictionary, or None for notifications.
    """
    request_id: str | int | None = None
    notification = False

    try:
        request = parse_request_object(data)
        request_id = request.id
        notification = request.is_notification

        if request.method not in registry:
            raise create_method_not_found_error(request.method)

        ctx = ProcedureContext.from_request(
            request, transport=transport, client_host=client_host
        )
        result = await registry.invoke(
            request.method, ctx, request.params, allowed_kinds=allowed_kinds
        )
        if notification:
            return None
        return format_success_response(request_id, result).to_dict()

    except Exception as e:
        if notification:
            # Notifications never get a response, errors included
            logger.warning(
                "Error processing notification",
                extra={"method": data.get("method"), "error": str(e)},
            )
            return None
        return format_error_response(request_id, _to_jsonrpc_error(e, request_id)).to_dict()


async def process_request(
    body: str | bytes,
    registry: ProcedureRegistry,
    *,
    transport: str = "internal",
    client_host: str | None = None,
) -> dict[str, Any] | list[dict[str, Any]] | None:
    """
    Process a raw JSON-RPC payload (single request or batch).

    Batch elements are processed in order; notifications contribute nothing
    to the batch response.

    Returns:
        Response dictionary, list of responses, or None when nothing is due.
    """
    try:
        data = decode_json(body)
    except JSONRPCError as e:
        return format_error_response(None, e).to_dict()

    if isinstance(data, list):
        if not data:
            return format_error_response(
                None, create_invalid_request_error("Empty batch")
            ).to_dict()
        responses = []
        for item in data:
            response = await dispatch_request(
                item, registry, transport=transport, client_host=client_host
            )
            if response is not None:
                responses.append(response)
        return responses or None

    return await dispatch_request(
        data, registry, transport=transport, client_host=client_host
    )


# =============================================================================
# WebSocket Sessions
# =============================================================================


class WebSocketSession:
    """
    One dashboard WebSocket connection.

    Owns the subscription tasks opened on this connection; they are all
    cancelled when the connection closes.
    """

    def __init__(
        self,
        websocket: WebSocket,
        registry: ProcedureRegistry,
    ) -> None:
        self.websocket = websocket
        self.registry = registry
        self.client_host = websocket.client.host if websocket.client else None
        self._subscriptions: dict[str, asyncio.Task[None]] = {}
        # Detach callbacks for broker-backed streams, keyed like the tasks
        self._cancels: dict[str, Callable[[], None]] = {}
        self._send_lock = asyncio.Lock()

    @property
    def subscription_ids(self) -> list[str]:
        return list(self._subscriptions)

    async def send(self, message: dict[str, Any] | list[dict[str, Any]]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def run(self) -> None:
        """Receive and answer messages until the client disconnects."""
        while True:
            text = await self.websocket.receive_text()
            try:
                data = decode_json(text)
            except JSONRPCError as e:
                await self.send(format_error_response(None, e).to_dict())
                continue

            if isinstance(data, list):
                if not data:
                    await self.send(
                        format_error_response(
                            None, create_invalid_request_error("Empty batch")
                        ).to_dict()
                    )
                    continue
                responses = []
                for item in data:
                    response = await self.handle_message(item)
                    if response is not None:
                        responses.append(response)
                if responses:
                    await self.send(responses)
                continue

            response = await self.handle_message(data)
            if response is not None:
                await self.send(response)

    async def handle_message(self, data: Any) -> dict[str, Any] | None:
        """Answer one request object; subscription acks are sent directly."""
        method = data.get("method") if isinstance(data, dict) else None
        procedure = self.registry.get(method) if isinstance(method, str) else None

        if method == SUBSCRIPTION_STOP_METHOD or (
            procedure is not None and procedure.kind == ProcedureKind.SUBSCRIPTION
        ):
            request_id: str | int | None = None
            try:
                request = parse_request_object(data)
                request_id = request.id
                if request.method == SUBSCRIPTION_STOP_METHOD:
                    result = await self.stop_subscription(request.params)
                    if request.is_notification:
                        return None
                    return format_success_response(request_id, result).to_dict()
                await self.start_subscription(request)
                return None
            except WebSocketDisconnect:
                raise
            except Exception as e:
                if request_id is None and isinstance(data.get("id"), (str, int)):
                    request_id = data["id"]
                return format_error_response(
                    request_id, _to_jsonrpc_error(e, request_id)
                ).to_dict()

        return await dispatch_request(
            data,
            self.registry,
            transport="ws",
            client_host=self.client_host,
        )

    async def start_subscription(self, request: JSONRPCRequest) -> str:
        """
        Open a subscription and start streaming it.

        The acknowledgement is sent before the stream task starts, so it
        always precedes the first event. A handler that attaches to the
        broker leaves its detach callback in ``ctx.metadata["cancel"]``;
        the session calls it whenever the subscription ends, including
        when the stream never got to run.

        Returns:
            The subscription id.
        """
        ctx = ProcedureContext.from_request(
            request, transport="ws", client_host=self.client_host
        )
        stream = await self.registry.open_subscription(request.method, ctx, request.params)
        subscription_id = str(ctx.metadata.get("subscription") or uuid.uuid4().hex)
        cancel = ctx.metadata.get("cancel")
        if callable(cancel):
            self._cancels[subscription_id] = cancel

        if not request.is_notification:
            try:
                await self.send(
                    format_success_response(
                        request.id, {"subscription": subscription_id}
                    ).to_dict()
                )
            except BaseException:
                self._release(subscription_id)
                await stream.aclose()
                raise

        self._subscriptions[subscription_id] = asyncio.create_task(
            self._pump(subscription_id, stream)
        )
        procedure_logger(logger, ctx).info(
            "Subscription started", extra={"subscription": subscription_id}
        )
        return subscription_id

    async def stop_subscription(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Cancel one subscription of this connection.

        Raises:
            InvalidArgumentError: If the subscription id is missing.
            NotFoundError: If this connection has no such subscription.
        """
        subscription_id = params.get("subscription")
        if not isinstance(subscription_id, str) or not subscription_id:
            raise InvalidArgumentError(
                "subscription is required",
                details={"parameter": "subscription"},
            )
        task = self._subscriptions.pop(subscription_id, None)
        if task is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                details={"subscription": subscription_id},
            )
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._release(subscription_id)
        logger.info("Subscription stopped", extra={"subscription": subscription_id})
        return {"success": True}

    def _release(self, subscription_id: str) -> None:
        cancel = self._cancels.pop(subscription_id, None)
        if cancel is not None:
            cancel()

    async def _pump(self, subscription_id: str, stream: AsyncGenerator[Any, None]) -> None:
        try:
            async with contextlib.aclosing(stream):
                async for item in stream:
                    await self.send(
                        format_notification(
                            SUBSCRIPTION_EVENT_METHOD,
                            {"subscription": subscription_id, "result": item},
                        )
                    )
        except (WebSocketDisconnect, RuntimeError) as e:
            # Client went away while an event was in flight
            logger.debug(
                "Subscription send failed",
                extra={"subscription": subscription_id, "error": str(e)},
            )
        finally:
            self._subscriptions.pop(subscription_id, None)
            self._release(subscription_id)

    async def close(self) -> None:
        """Cancel every subscription of this connection."""
        tasks = list(self._subscriptions.values())
        self._subscriptions.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        # A task cancelled before its first step never runs its finally block
        for subscription_id in list(self._cancels):
            self._release(subscription_id)


# =============================================================================
# Application
# =============================================================================


def _error_json(error: JSONRPCError) -> JSONResponse:
    status_code = HTTP_STATUS_BY_RPC_CODE.get(error.code, 500)
    headers = {"Allow": "POST"} if status_code == 405 else None
    return JSONResponse(
        format_error_response(None, error).to_dict(),
        status_code=status_code,
        headers=headers,
    )


def create_app(
    services: DashboardServices,
    config: AppConfig,
    registry: ProcedureRegistry | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Services built at startup; closed when the app shuts down.
        config: Application configuration.
        registry: Optional pre-built registry; built from ``services`` if None.

    Returns:
        Configured FastAPI instance.
    """
    registry = registry if registry is not None else create_registry(services)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Dashboard API starting",
            extra={
                "listen": config.server.listen,
                "procedures": len(registry),
                "player_enabled": services.player is not None,
            },
        )
        try:
            yield
        finally:
            await services.aclose()
            logger.info("Dashboard API stopped")

    app = FastAPI(
        title="homedash",
        description="Home dashboard API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.registry = registry

    origins = config.server.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "procedures": len(registry)}

    @app.post("/rpc")
    async def rpc_post(request: Request) -> Response:
        body = await request.body()
        result = await process_request(
            body,
            registry,
            transport="http",
            client_host=request.client.host if request.client else None,
        )
        if result is None:
            return Response(status_code=204)
        return JSONResponse(result)

    @app.get("/rpc/{procedure}")
    async def rpc_get(
        procedure: str,
        request: Request,
        input_json: str | None = Query(default=None, alias="input"),
    ) -> Response:
        """Call a query with its params JSON-encoded in ``input``."""
        entry = registry.get(procedure)
        if entry is None:
            return _error_json(create_method_not_found_error(procedure))
        if entry.kind != ProcedureKind.QUERY:
            return _error_json(tool_error_to_jsonrpc_error(ProcedureKindError(entry)))

        try:
            params = decode_json(input_json) if input_json else {}
            if params is None:
                params = {}
            if not isinstance(params, dict):
                raise JSONRPCError(
                    code=INVALID_PARAMS,
                    message="Invalid params: 'input' must be a JSON object",
                )
            ctx = ProcedureContext(
                procedure=procedure,
                transport="http",
                client_host=request.client.host if request.client else None,
            )
            result = await registry.invoke(
                procedure, ctx, params, allowed_kinds=(ProcedureKind.QUERY,)
            )
        except Exception as e:
            return _error_json(_to_jsonrpc_error(e, None))
        return JSONResponse(format_success_response(None, result).to_dict())

    @app.websocket("/ws")
    async def websocket_rpc(websocket: WebSocket) -> None:
        await websocket.accept()
        session = WebSocketSession(websocket, registry)
        logger.info("WebSocket connected", extra={"client_host": session.client_host})
        try:
            await session.run()
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected", extra={"client_host": session.client_host})
        finally:
            await session.close()

    return app


# =============================================================================
# Entry Point
# =============================================================================


def run_server(config: AppConfig) -> None:
    """Build services and serve the app with uvicorn until interrupted."""
    services = build_services(config)
    app = create_app(services, config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        log_config=None,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=10,
    )


def main(argv: list[str] | None = None) -> int:
    """
    Command-line entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv).

    Returns:
        Process exit code.
    """
    config = load_config(cli_args=argv)
    setup_logging(config.logging)
    logger.info(
        "Starting homedash",
        extra={"version": __version__, "listen": config.server.listen},
    )
    run_server(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
