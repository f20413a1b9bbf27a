"""
Wire format for the router's LuCI JSON-RPC endpoints.

Request body:  {"method": "<name>", "params": [...], "id": <int>}
Response body: {"id": <int>, "result": <value>, "error": null}
           or  {"id": <int>, "result": null, "error": {"code": .., "message": ..}}

Endpoints live under ``<base_url>/cgi-bin/luci/rpc/<group>`` where group is
``auth`` for login or one of the SubEndpoint values for everything else. The
session token travels as the ``auth`` query parameter.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

RPC_PATH = "/cgi-bin/luci/rpc"
AUTH_ENDPOINT = "auth"
LOGIN_METHOD = "login"
TOKEN_QUERY_PARAM = "auth"

# =============================================================================
# Error codes
# =============================================================================

AUTH_FAILED = "AUTH_FAILED"
AUTH_ERROR = "AUTH_ERROR"
HTTP_ERROR = "HTTP_ERROR"
RPC_ERROR = "RPC_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

DEVICE_ERROR_CODES = frozenset(
    {AUTH_FAILED, AUTH_ERROR, HTTP_ERROR, RPC_ERROR, UNKNOWN_ERROR}
)


class DeviceRPCError(Exception):
    """
    Failure of a call against the router.

    Attributes:
        code: One of AUTH_FAILED, AUTH_ERROR, HTTP_ERROR, RPC_ERROR,
            UNKNOWN_ERROR.
        message: Human-readable description.
        details: Identification of the failed call (endpoint, method, status).
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a DeviceRPCError."""
        if code not in DEVICE_ERROR_CODES:
            raise ValueError(f"Unknown device error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return f"DeviceRPCError(code={self.code!r}, message={self.message!r})"


class SubEndpoint(str, Enum):
    """RPC groups exposed by the router."""

    SYSTEM = "sys"
    FILESYSTEM = "fs"
    CONFIG = "uci"


def endpoint_url(base_url: str, group: str) -> str:
    """Build the URL of an RPC group."""
    return f"{base_url.rstrip('/')}{RPC_PATH}/{group}"


# =============================================================================
# Envelope
# =============================================================================


class RequestIDGenerator:
    """Sequential integer ids for outgoing envelopes."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def generate(self) -> int:
        return next(self._counter)


@dataclass
class DeviceRequest:
    """
    Outgoing RPC envelope.

    Attributes:
        method: Remote method name.
        params: Positional parameters.
        id: Envelope id.
    """

    method: str
    params: list[Any] = field(default_factory=list)
    id: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "params": list(self.params), "id": self.id}


@dataclass
class DeviceRPCErrorInfo:
    """Error descriptor carried by a response envelope."""

    code: int | None
    message: str


@dataclass
class DeviceResponse:
    """
    Incoming RPC envelope.

    Exactly one of ``result`` and ``error`` is meaningful: a response is an
    error response when ``error`` is set, a success response otherwise.
    """

    id: int | str | None
    result: Any = None
    error: DeviceRPCErrorInfo | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_dict(cls, data: Any) -> DeviceResponse:
        """
        Parse a decoded JSON body.

        Args:
            data: Decoded JSON value.

        Returns:
            DeviceResponse instance.

        Raises:
            ValueError: If the body is not an envelope, or carries both a
                result and an error, or neither.
        """
        if not isinstance(data, dict):
            raise ValueError("Response envelope must be a JSON object")

        raw_error = data.get("error")
        has_result = "result" in data

        if raw_error is not None:
            if has_result and data["result"] is not None:
                raise ValueError("Response envelope carries both result and error")
            if isinstance(raw_error, dict):
                error = DeviceRPCErrorInfo(
                    code=raw_error.get("code"),
                    message=str(raw_error.get("message", "Unknown RPC error")),
                )
            else:
                error = DeviceRPCErrorInfo(code=None, message=str(raw_error))
            return cls(id=data.get("id"), error=error)

        if not has_result:
            raise ValueError("Response envelope carries neither result nor error")

        return cls(id=data.get("id"), result=data["result"])
