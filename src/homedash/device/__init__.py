"""
Router RPC client package.

Modules:
- protocol: LuCI JSON-RPC envelope, endpoints and error codes
- client: DeviceClient with session token handling and 403 retry
"""

from homedash.device.client import DeviceClient, SessionToken
from homedash.device.protocol import DeviceRPCError, SubEndpoint

__all__ = [
    "DeviceClient",
    "DeviceRPCError",
    "SessionToken",
    "SubEndpoint",
]
