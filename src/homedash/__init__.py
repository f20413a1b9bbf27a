"""
Home dashboard backend.

This package serves the dashboard's JSON-RPC procedures over HTTP and
WebSocket, controls the local media player, talks to the home router's LuCI
RPC endpoint and keeps an in-memory todo list.
"""

__version__ = "0.1.0"
