"""
Authenticated client for the router's LuCI JSON-RPC endpoints.

The client logs in lazily, keeps the session token for its validity window,
and retries a call exactly once when the router answers 403 (token revoked
or expired server-side). A second 403 for the same call is final.

The token is a plain attribute without a lock: concurrent calls that find it
expired may both log in, which only costs a duplicate login. Every call works
on the token snapshot it read.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from homedash.device.protocol import (
    AUTH_ENDPOINT,
    AUTH_ERROR,
    AUTH_FAILED,
    HTTP_ERROR,
    LOGIN_METHOD,
    RPC_ERROR,
    TOKEN_QUERY_PARAM,
    UNKNOWN_ERROR,
    DeviceRequest,
    DeviceResponse,
    DeviceRPCError,
    RequestIDGenerator,
    SubEndpoint,
    endpoint_url,
)
from homedash.logging import get_logger

if TYPE_CHECKING:
    from homedash.config import DeviceConfig

logger = get_logger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 3600
DEFAULT_TIMEOUT_SECONDS = 10.0

# First attempt plus one retry after a 403
MAX_CALL_ATTEMPTS = 2


@dataclass(frozen=True)
class SessionToken:
    """
    Router session credential.

    Attributes:
        value: Opaque token string.
        expires_at: Epoch seconds; the token is valid strictly before this.
    """

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class DeviceClient:
    """
    JSON-RPC client for the router.

    Example:
        >>> async with DeviceClient("http://192.168.1.1", "root", "secret") as client:
        ...     uptime = await client.call(SubEndpoint.SYSTEM, "uptime")
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str | None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Router base URL (scheme and host).
            username: Login user.
            password: Login password; calls fail with AUTH_FAILED while unset.
            timeout: Timeout in seconds applied to every request.
            token_ttl_seconds: Validity window of a fresh token.
            http_client: Optional pre-built httpx client (tests inject one
                with a MockTransport). A client passed in is not closed by
                ``aclose()``.
            clock: Time source returning epoch seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.timeout = timeout
        self.token_ttl_seconds = token_ttl_seconds
        self._clock = clock
        self._token: SessionToken | None = None
        self._id_generator = RequestIDGenerator()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(
        cls,
        config: DeviceConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> DeviceClient:
        """
        Create a client from configuration.

        Args:
            config: Device section of AppConfig.
            http_client: Optional pre-built httpx client.

        Returns:
            Configured DeviceClient instance.
        """
        return cls(
            base_url=config.base_url,
            username=config.username,
            password=config.password,
            timeout=config.request_timeout_seconds,
            token_ttl_seconds=config.token_ttl_seconds,
            http_client=http_client,
        )

    # -------------------------------------------------------------------------
    # Token handling
    # -------------------------------------------------------------------------

    def has_valid_token(self) -> bool:
        """Return True when a token is held and has not expired."""
        return self._token is not None and self._token.is_valid(self._clock())

    def invalidate_token(self) -> None:
        """Drop the held token so the next call logs in again."""
        self._token = None

    async def _get_token(self) -> str:
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value
        return await self._authenticate()

    async def _authenticate(self) -> str:
        """
        Log in and store a fresh token.

        Returns:
            The new token value.

        Raises:
            DeviceRPCError: AUTH_FAILED when the login request itself fails,
                AUTH_ERROR when the router rejects the credentials.
        """
        details = {"endpoint": AUTH_ENDPOINT, "method": LOGIN_METHOD}
        try:
            if self._password is None:
                raise DeviceRPCError(
                    AUTH_FAILED, "Router password is not configured", details
                )

            request = DeviceRequest(
                method=LOGIN_METHOD,
                params=[self.username, self._password],
                id=self._id_generator.generate(),
            )
            try:
                res = await self._http.post(
                    endpoint_url(self.base_url, AUTH_ENDPOINT),
                    json=request.to_dict(),
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                raise DeviceRPCError(
                    AUTH_FAILED, f"Auth request failed: {e}", details
                ) from e

            if not res.is_success:
                raise DeviceRPCError(
                    AUTH_FAILED,
                    f"Auth request failed: {res.reason_phrase or res.status_code}",
                    {**details, "status": res.status_code},
                )

            try:
                response = DeviceResponse.from_dict(res.json())
            except ValueError as e:
                raise DeviceRPCError(
                    AUTH_ERROR, f"Invalid auth response: {e}", details
                ) from e

            if response.error is not None:
                raise DeviceRPCError(AUTH_ERROR, response.error.message, details)
            if not isinstance(response.result, str) or not response.result:
                raise DeviceRPCError(AUTH_ERROR, "Login rejected by router", details)

        except DeviceRPCError as e:
            logger.error(
                "Failed to fetch auth token",
                extra={"error_code": e.code, "error": e.message},
            )
            raise

        self._token = SessionToken(
            value=response.result,
            expires_at=self._clock() + self.token_ttl_seconds,
        )
        logger.info(
            "Successfully fetched auth token",
            extra={"expires_in_seconds": self.token_ttl_seconds},
        )
        return self._token.value

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def call(
        self,
        endpoint: SubEndpoint | str,
        method: str,
        params: list[Any] | None = None,
    ) -> Any:
        """
        Call a remote method.

        Args:
            endpoint: RPC group the method belongs to.
            method: Remote method name.
            params: Positional parameters (JSON-serializable).

        Returns:
            The ``result`` member of the response envelope.

        Raises:
            DeviceRPCError: On any failure; the original exception, if any,
                is chained as ``__cause__``.
        """
        group = SubEndpoint(endpoint).value
        if not method:
            raise ValueError("method must be a non-empty string")
        params = list(params or [])
        details = {"endpoint": group, "method": method}

        try:
            return await self._call_with_retry(group, method, params, details)
        except DeviceRPCError as e:
            logger.error(
                f"RPC call failed: {group}.{method}",
                extra={**details, "error_code": e.code, "error": e.message},
            )
            raise
        except Exception as e:
            logger.error(
                f"RPC call failed: {group}.{method}",
                extra={**details, "error_code": UNKNOWN_ERROR, "error": str(e)},
            )
            raise DeviceRPCError(
                UNKNOWN_ERROR, "Unexpected error during RPC call", details
            ) from e

    async def _call_with_retry(
        self,
        group: str,
        method: str,
        params: list[Any],
        details: dict[str, Any],
    ) -> Any:
        url = endpoint_url(self.base_url, group)

        for attempt in range(1, MAX_CALL_ATTEMPTS + 1):
            token = await self._get_token()
            request = DeviceRequest(
                method=method, params=params, id=self._id_generator.generate()
            )
            res = await self._http.post(
                url,
                params={TOKEN_QUERY_PARAM: token},
                json=request.to_dict(),
                timeout=self.timeout,
            )

            if res.status_code == httpx.codes.FORBIDDEN and attempt < MAX_CALL_ATTEMPTS:
                logger.info("Token expired, refreshing and retrying", extra=details)
                self.invalidate_token()
                continue

            if not res.is_success:
                raise DeviceRPCError(
                    HTTP_ERROR,
                    f"HTTP {res.status_code}: {res.reason_phrase}",
                    {**details, "status": res.status_code},
                )

            try:
                response = DeviceResponse.from_dict(res.json())
            except ValueError as e:
                raise DeviceRPCError(
                    RPC_ERROR, f"Invalid RPC response: {e}", details
                ) from e

            if response.error is not None:
                raise DeviceRPCError(RPC_ERROR, response.error.message, details)

            return response.result

        # Unreachable: the last attempt either returns or raises
        raise DeviceRPCError(UNKNOWN_ERROR, "RPC retry budget exhausted", details)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> DeviceClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()
