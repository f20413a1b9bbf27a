"""
JSON-RPC 2.0 framing for the dashboard RPC surface.

Features:
- Request parsing with validation (single objects; batches are split by the
  transport and parsed element by element)
- Success, error and notification formatting
- ToolError to JSON-RPC error code mapping

Error Code Mapping:
- -32700: Parse error (malformed JSON)
- -32600: Invalid Request (missing/invalid jsonrpc, method, etc.)
- -32601: Method not found (unknown procedure)
- -32602: Invalid params (input validation failed)
- -32603: Internal error (framework failure)
- -32000 to -32099: Server errors (mapped from ToolError)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from homedash.errors import ToolError

# =============================================================================
# JSON-RPC Error Codes
# =============================================================================

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ERROR_CODE_MAP: dict[str, int] = {
    "invalid_argument": INVALID_PARAMS,
    "not_found": -32003,
    "failed_precondition": -32004,
    "unavailable": -32006,
    "internal": -32099,
}

DEFAULT_SERVER_ERROR = -32000

# Method name of server-push notifications on the WebSocket transport
SUBSCRIPTION_EVENT_METHOD = "subscription.event"


# =============================================================================
# Data Classes
# =============================================================================


class JSONRPCError(Exception):
    """
    A JSON-RPC 2.0 error object that can also be raised.

    Attributes:
        code: Integer error code.
        message: Human-readable error message.
        data: Optional structured error data.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result

    def __repr__(self) -> str:
        return (
            f"JSONRPCError(code={self.code}, "
            f"message={self.message!r}, "
            f"data={self.data!r})"
        )


@dataclass
class JSONRPCRequest:
    """
    A parsed JSON-RPC 2.0 request.

    Attributes:
        jsonrpc: Protocol version (must be "2.0").
        id: Request identifier (None for notifications).
        method: Procedure name.
        params: Parameters object (empty dict when omitted).
    """

    jsonrpc: str
    id: str | int | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


@dataclass
class JSONRPCResponse:
    """
    A JSON-RPC 2.0 response; exactly one of result/error is serialized.
    """

    jsonrpc: str
    id: str | int | None
    result: Any | None = None
    error: JSONRPCError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
        }
        if self.error is not None:
            response["error"] = self.error.to_dict()
        else:
            response["result"] = self.result
        return response

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)


# =============================================================================
# Request Parsing
# =============================================================================


def decode_json(raw: str | bytes) -> Any:
    """
    Decode a JSON payload.

    Raises:
        JSONRPCError: PARSE_ERROR if the payload is not valid JSON.
    """
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise JSONRPCError(
            code=PARSE_ERROR,
            message=f"Parse error: Invalid JSON - {e}",
        ) from e


def parse_request_object(data: Any) -> JSONRPCRequest:
    """
    Validate a decoded request object.

    Args:
        data: Decoded JSON value.

    Returns:
        Parsed JSONRPCRequest.

    Raises:
        JSONRPCError: If the object is not a valid JSON-RPC 2.0 request.
    """
    if not isinstance(data, dict):
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Request must be a JSON object",
        )

    jsonrpc = data.get("jsonrpc")
    if jsonrpc is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'jsonrpc' field",
        )
    if jsonrpc != "2.0":
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message=f"Invalid Request: jsonrpc must be '2.0', got '{jsonrpc}'",
        )

    method = data.get("method")
    if method is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'method' field",
        )
    if not isinstance(method, str) or not method:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'method' must be a non-empty string",
        )

    request_id = data.get("id")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, (str, int))
    ):
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'id' must be a string or an integer",
        )

    # Procedures take named inputs only
    params = data.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise JSONRPCError(
            code=INVALID_PARAMS,
            message="Invalid params: 'params' must be an object",
        )

    return JSONRPCRequest(
        jsonrpc="2.0",
        id=request_id,
        method=method,
        params=params,
    )


def parse_request(request_json: str | bytes) -> JSONRPCRequest:
    """
    Parse a JSON-RPC 2.0 request from a JSON string.

    Example:
        >>> request = parse_request('{"jsonrpc":"2.0","id":1,"method":"todo.get_all"}')
        >>> request.method
        'todo.get_all'
    """
    return parse_request_object(decode_json(request_json))


# =============================================================================
# Response Formatting
# =============================================================================


def format_success_response(
    request_id: str | int | None,
    result: Any,
) -> JSONRPCResponse:
    """Format a successful JSON-RPC 2.0 response."""
    return JSONRPCResponse(
        jsonrpc="2.0",
        id=request_id,
        result=result,
        error=None,
    )


def format_error_response(
    request_id: str | int | None,
    error: JSONRPCError,
) -> JSONRPCResponse:
    """Format a JSON-RPC 2.0 error response."""
    return JSONRPCResponse(
        jsonrpc="2.0",
        id=request_id,
        result=None,
        error=error,
    )


def format_notification(method: str, params: dict[str, Any]) -> dict[str, Any]:
    """Format a server-to-client notification (no id)."""
    return {"jsonrpc": "2.0", "method": method, "params": params}


# =============================================================================
# ToolError to JSON-RPC Error Mapping
# =============================================================================


def tool_error_to_jsonrpc_error(tool_error: ToolError) -> JSONRPCError:
    """
    Convert a ToolError to a JSONRPCError.

    Only the error's own fields are serialized; a chained ``__cause__`` stays
    on the server.

    Example:
        >>> from homedash.errors import NotFoundError
        >>> tool_error_to_jsonrpc_error(NotFoundError("Todo with id 9 not found")).code
        -32003
    """
    jsonrpc_code = ERROR_CODE_MAP.get(tool_error.error_code, DEFAULT_SERVER_ERROR)

    data: dict[str, Any] = {
        "error_code": tool_error.error_code,
        "message": tool_error.message,
        "details": tool_error.details,
    }

    return JSONRPCError(
        code=jsonrpc_code,
        message=tool_error.message,
        data=data,
    )


def create_method_not_found_error(method: str) -> JSONRPCError:
    """Create a "Method not found" error for an unknown procedure."""
    return JSONRPCError(
        code=METHOD_NOT_FOUND,
        message=f"Method not found: {method}",
        data={
            "error_code": "not_found",
            "message": f"Procedure '{method}' is not registered",
            "details": {"method": method},
        },
    )


def create_invalid_request_error(message: str) -> JSONRPCError:
    """Create an "Invalid Request" error."""
    return JSONRPCError(code=INVALID_REQUEST, message=f"Invalid Request: {message}")


def create_internal_error(
    message: str, details: dict[str, Any] | None = None
) -> JSONRPCError:
    """Create an internal error for unexpected exceptions."""
    return JSONRPCError(
        code=INTERNAL_ERROR,
        message=message,
        data={
            "error_code": "internal",
            "message": message,
            "details": details or {},
        },
    )
