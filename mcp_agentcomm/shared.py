"""Shared multi-client AgentComm server: JSON-RPC over WebSocket plus HTTP status."""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

from agentcomm import __version__
from agentcomm.config import Settings
from agentcomm.coordinator import Coordinator
from agentcomm.dispatcher import CommandDispatcher
from agentcomm.schemas import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    """One open WebSocket connection."""

    websocket: WebSocket
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected_at: str = field(default_factory=utc_now)
    last_activity: str = field(default_factory=utc_now)

    def touch(self) -> None:
        self.last_activity = utc_now()

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "connectedAt": self.connected_at, "lastActivity": self.last_activity}


class ConnectionHub:
    """Tracks open connections and fans notifications out to them."""

    def __init__(self):
        self.clients: dict[str, ClientSession] = {}

    def connect(self, websocket: WebSocket) -> ClientSession:
        client = ClientSession(websocket=websocket)
        self.clients[client.id] = client
        logger.info(f"Client connected: {client.id} ({len(self.clients)} open)")
        return client

    def disconnect(self, client: ClientSession) -> None:
        if self.clients.pop(client.id, None) is not None:
            logger.info(f"Client disconnected: {client.id} ({len(self.clients)} open)")

    async def send(self, client: ClientSession, message: dict[str, Any]) -> bool:
        """Send to one client. A failed send drops that client only."""
        try:
            await client.websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning(f"Dropping client {client.id} after send failure: {e}")
            self.disconnect(client)
            return False

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Push a message to every open connection.

        Returns:
            Number of clients that received it
        """
        delivered = 0
        for client in list(self.clients.values()):
            if await self.send(client, message):
                delivered += 1
        return delivered


def notification(method: str, params: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": params}


def create_app(
    settings: Settings | None = None,
    coordinator: Coordinator | None = None,
    start_poller: bool = True,
) -> FastAPI:
    """Build the shared server around one coordinator and one dispatcher.

    Args:
        settings: Runtime settings (defaults to the environment)
        coordinator: Pre-built coordinator, mainly for tests
        start_poller: Run the mailbox poller for the app's lifetime
    """
    settings = settings or Settings.from_env()
    if coordinator is None:
        settings.agents_path.mkdir(parents=True, exist_ok=True)
        settings.reports_path.mkdir(parents=True, exist_ok=True)
        coordinator = Coordinator(settings.agents_path, poll_interval_ms=settings.poll_interval_ms)

    dispatcher = CommandDispatcher(coordinator)
    hub = ConnectionHub()
    started = time.monotonic()

    async def forward_event(event: str, params: dict[str, Any]) -> None:
        await hub.broadcast(notification(event, params))

    dispatcher.add_listener(forward_event)

    def server_status() -> dict[str, Any]:
        return {
            "timestamp": utc_now(),
            "port": settings.port,
            "connectedClients": len(hub.clients),
            "connectedAgents": len(coordinator.agents),
            "uptime": round(time.monotonic() - started, 3),
            "clients": [client.to_dict() for client in hub.clients.values()],
        }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_poller:
            coordinator.poller.start()
        logger.info(f"Shared server ready on ws://{settings.host}:{settings.port}/mcp")
        yield
        if start_poller:
            await coordinator.poller.stop()
        logger.info("Shared server stopped")

    app = FastAPI(
        title="AgentComm Shared Server",
        description="Multi-client JSON-RPC server for agent coordination",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator
    app.state.dispatcher = dispatcher
    app.state.hub = hub

    @app.websocket("/mcp")
    async def mcp_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        client = hub.connect(websocket)

        await hub.send(
            client,
            notification(
                "server/welcome",
                {
                    "clientId": client.id,
                    "serverVersion": __version__,
                    "availableMethods": dispatcher.method_names,
                },
            ),
        )
        await hub.broadcast(notification("server/status", server_status()))

        try:
            while True:
                text = await websocket.receive_text()
                client.touch()
                response = await dispatcher.dispatch_line(text)
                if response is not None:
                    await websocket.send_text(json.dumps(response))
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.error(f"Connection error for client {client.id}", exc_info=True)
        finally:
            hub.disconnect(client)
            await hub.broadcast(notification("server/status", server_status()))

    @app.get("/status")
    async def status() -> dict[str, Any]:
        """Connection and agent counts with uptime."""
        return server_status()

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return (
            "<h1>AgentComm Shared Server</h1>"
            f"<p>WebSocket endpoint: ws://{settings.host}:{settings.port}/mcp</p>"
            '<p>Status endpoint: <a href="/status">/status</a></p>'
            f"<p>Connected clients: {len(hub.clients)}</p>"
            f"<p>Connected agents: {len(coordinator.agents)}</p>"
        )

    return app


def main() -> None:
    import uvicorn

    from agentcomm.config import setup_logging

    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
