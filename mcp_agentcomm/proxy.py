"""Stdio-to-WebSocket proxy in front of the shared AgentComm server.

Discovery calls are answered locally so a stdio client gets an immediate
handshake; everything else is forwarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.types import INTERNAL_ERROR, PARSE_ERROR, TextContent

from agentcomm import __version__
from agentcomm.config import Settings, setup_logging
from agentcomm.dispatcher import PROTOCOL_VERSION, TOOLS, Operation, error_response, success_response
from mcp_agentcomm.client import RemoteError, SharedClient
from mcp_agentcomm.stdio import serve_stdio

logger = logging.getLogger(__name__)

PROXY_NAME = "agentcomm-proxy"
ALLOWED_BEFORE_INIT = {"initialize", "initialized", "notifications/initialized", "ping"}


class ProxyNotInitializedError(Exception):
    """Raised for forwarded calls made before the handshake completes."""

    pass


def remote_method(tool_name: str) -> str:
    """Map a tool name to the shared server's legacy method name."""
    for op in Operation:
        if tool_name == op.value:
            return op.legacy_name
    return tool_name


class MCPProxy:
    """Bridges one stdio session to a remote shared server."""

    def __init__(self, client: SharedClient):
        self.client = client
        self.initialized = False

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            return error_response(None, PARSE_ERROR, f"Parse error: {e}")
        return await self.handle(request)

    async def handle(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Answer or forward one request. Returns None for notifications."""
        request_id = request.get("id")
        is_notification = "id" not in request
        method = request.get("method")
        params = request.get("params") or {}

        try:
            result = await self._route(method, params)
        except RemoteError as e:
            result, error = None, (e.code, str(e))
        except Exception as e:
            logger.error(f"Proxy error for {method}: {e}")
            result, error = None, (INTERNAL_ERROR, str(e))
        else:
            error = None

        if is_notification:
            return None
        if error is not None:
            return error_response(request_id, *error)
        return success_response(request_id, result if result is not None else {})

    async def _route(self, method: str, params: dict[str, Any]) -> Any:
        # Local handshake and discovery
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "resources": {}, "prompts": {}, "logging": {}},
                "serverInfo": {"name": PROXY_NAME, "version": __version__},
            }
        if method in ("initialized", "notifications/initialized"):
            self.initialized = True
            logger.info("MCP initialization complete")
            return None
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]}
        if method == "resources/list":
            return {"resources": []}
        if method == "prompts/list":
            return {"prompts": []}

        if not self.initialized and method not in ALLOWED_BEFORE_INIT:
            raise ProxyNotInitializedError("MCP not initialized")

        if method == "tools/call":
            name = params.get("name", "")
            result = await self.client.request(remote_method(name), params.get("arguments") or {})
            content = TextContent(type="text", text=json.dumps(result, indent=2))
            return {"content": [content.model_dump(exclude_none=True)]}

        return await self.client.request(method, params)


async def run(settings: Settings) -> None:
    client = SharedClient(settings.shared_server_url)
    await client.connect()
    proxy = MCPProxy(client)
    try:
        await serve_stdio(proxy.handle_line)
    finally:
        await client.close()


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
