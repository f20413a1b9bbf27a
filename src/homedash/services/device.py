"""
Router facade.

Translates raw LuCI RPC calls into the operations the dashboard needs:
system status, reboot, process checks and init.d service management.
Every failure leaves this module as an InternalError with the underlying
exception chained; device error codes are never surfaced to callers.
"""

from __future__ import annotations

import asyncio
import base64
import shlex
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from homedash.device.protocol import SubEndpoint
from homedash.errors import InternalError
from homedash.logging import get_logger

if TYPE_CHECKING:
    from homedash.device.client import DeviceClient

logger = get_logger(__name__)

THERMAL_ZONE_PATH = "/sys/class/thermal/thermal_zone0/temp"
LOADAVG_PATH = "/proc/loadavg"

VALID_INITD_ACTIONS = ("start", "stop", "enable", "disable")


@dataclass
class LoadAverage:
    avg1: float
    avg5: float
    avg15: float


@dataclass
class SystemStatus:
    """
    Router health snapshot.

    Attributes:
        uptime: Seconds since boot.
        temperature: SoC temperature in degrees Celsius.
        load: 1, 5 and 15 minute load averages.
    """

    uptime: int
    temperature: float
    load: LoadAverage

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Parsing helpers
# =============================================================================


def decode_file_content(encoded: str) -> str:
    """Decode a base64 ``fs.readfile`` result."""
    return base64.b64decode(encoded).decode("utf-8")


def parse_uptime(raw: Any) -> int:
    """Parse ``sys.uptime`` (number or numeric string) as whole seconds."""
    return int(float(raw))


def parse_temperature(raw: str) -> float:
    """Convert a thermal zone reading in millidegrees to Celsius."""
    return int(raw.strip()) / 1000


def parse_load_average(raw: str) -> LoadAverage:
    """
    Parse the first three fields of /proc/loadavg.

    Example:
        >>> parse_load_average("0.12 0.34 0.56 2/150 1234")
        LoadAverage(avg1=0.12, avg5=0.34, avg15=0.56)
    """
    fields = raw.split()
    if len(fields) < 3:
        raise ValueError(f"Unexpected loadavg content: {raw!r}")
    avg1, avg5, avg15 = (float(value) for value in fields[:3])
    return LoadAverage(avg1=avg1, avg5=avg5, avg15=avg15)


def parse_exit_status(raw: Any) -> int:
    """Parse the numeric exit status returned by ``sys.call``."""
    if isinstance(raw, bool):
        raise ValueError(f"Unexpected exit status: {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    raise ValueError(f"Unexpected exit status: {raw!r}")


# =============================================================================
# Facade
# =============================================================================


class RouterService:
    """Domain operations on the home router."""

    def __init__(self, client: DeviceClient) -> None:
        self._client = client

    async def get_system_status(self) -> SystemStatus:
        """
        Fetch uptime, temperature and load average concurrently.

        All three calls must succeed; a single failure fails the whole status.

        Raises:
            InternalError: If any call or parse step fails.
        """
        try:
            uptime_raw, temp_encoded, load_encoded = await asyncio.gather(
                self._client.call(SubEndpoint.SYSTEM, "uptime"),
                self._client.call(
                    SubEndpoint.FILESYSTEM, "readfile", [THERMAL_ZONE_PATH]
                ),
                self._client.call(SubEndpoint.FILESYSTEM, "readfile", [LOADAVG_PATH]),
            )
            return SystemStatus(
                uptime=parse_uptime(uptime_raw),
                temperature=parse_temperature(decode_file_content(temp_encoded)),
                load=parse_load_average(decode_file_content(load_encoded)),
            )
        except Exception as e:
            logger.error("Failed to fetch system status", extra={"error": str(e)})
            raise InternalError("Failed to fetch system status") from e

    async def reboot_router(self) -> None:
        """
        Ask the router to reboot.

        Raises:
            InternalError: If the call fails.
        """
        try:
            await self._client.call(SubEndpoint.SYSTEM, "reboot")
        except Exception as e:
            logger.error("Failed to reboot router", extra={"error": str(e)})
            raise InternalError("Failed to reboot router") from e
        logger.info("Router reboot initiated")

    async def is_process_running(self, process_name: str) -> bool:
        """
        Check whether a process runs on the router.

        ``pgrep`` exits 0 when a match exists, so a zero result means running.

        Args:
            process_name: Process name passed to pgrep.

        Returns:
            True if the remote exit status is 0, False for any other status.

        Raises:
            InternalError: If the call fails or returns a non-numeric status.
        """
        command = f"pgrep {shlex.quote(process_name)} >/dev/null 2>&1"
        try:
            result = await self._client.call(SubEndpoint.SYSTEM, "call", [command])
            return parse_exit_status(result) == 0
        except Exception as e:
            logger.error(
                f"Failed to check process status for {process_name}",
                extra={"process_name": process_name, "error": str(e)},
            )
            raise InternalError(
                "Failed to check process status",
                details={"process_name": process_name},
            ) from e

    async def manage_initd_process(self, process_name: str, action: str) -> None:
        """
        Start, stop, enable or disable an init.d service.

        Args:
            process_name: init.d script name.
            action: One of start, stop, enable, disable.

        Raises:
            InternalError: If the call fails or the action is unknown.
        """
        message = f"Failed to manage init.d process {process_name} {action}"
        try:
            if action not in VALID_INITD_ACTIONS:
                raise ValueError(f"Unsupported init.d action: {action}")
            await self._client.call(SubEndpoint.SYSTEM, f"init.{action}", [process_name])
        except Exception as e:
            logger.error(
                message,
                extra={"process_name": process_name, "action": action, "error": str(e)},
            )
            raise InternalError(
                message, details={"process_name": process_name, "action": action}
            ) from e
        logger.info(
            f"Init.d process {process_name} {action}d",
            extra={"process_name": process_name, "action": action},
        )
