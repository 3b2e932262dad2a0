"""JSON-RPC client for external tool-server processes."""

from toolhub_server.mcp.stdio_client import (
    PROTOCOL_VERSION,
    StdioMcpClient,
    wait_for_ready,
)

__all__ = ["PROTOCOL_VERSION", "StdioMcpClient", "wait_for_ready"]
