"""WebSocket JSON-RPC client for the shared AgentComm server."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY = 1.0


class RemoteError(Exception):
    """JSON-RPC error returned by the shared server."""

    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


class SharedClient:
    """Request/response client over one WebSocket, with linear-backoff reconnect.

    Server notifications (requests without an id) are logged, not returned.
    """

    def __init__(
        self,
        url: str,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ):
        self.url = url
        self.request_timeout = request_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay

        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the WebSocket and start reading from it."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url)
        self._closing = False
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to shared server at {self.url}")

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
        self._fail_pending(ConnectionError("Client closed"))

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            ConnectionError: If not connected
            TimeoutError: If no response arrives within the request timeout
            RemoteError: If the server answers with an error
        """
        if not self.connected:
            raise ConnectionError("Not connected to shared server")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send_str(
                json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}})
            )
            response = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Request timeout: {method}") from None
        finally:
            self._pending.pop(request_id, None)

        if "error" in response:
            error = response["error"]
            raise RemoteError(error.get("code", -32603), error.get("message", "Unknown error"))
        return response.get("result")

    async def _read_loop(self) -> None:
        ws = self._ws
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.handle_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"WebSocket error: {ws.exception()}")
                break

        logger.info("Disconnected from shared server")
        self._fail_pending(ConnectionError("Connection closed"))
        if not self._closing:
            self._reconnect_task = asyncio.create_task(self.reconnect())
            self._reconnect_task.add_done_callback(self._reconnect_finished)

    def handle_message(self, data: str) -> None:
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.error(f"Unparseable message from server: {data[:200]}")
            return

        future = self._pending.get(message.get("id")) if "id" in message else None
        if future is not None:
            if not future.done():
                future.set_result(message)
        elif "method" in message:
            self.handle_notification(message)

    def handle_notification(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        params = message.get("params", {})
        if method == "server/welcome":
            logger.info(f"Server welcome: client {params.get('clientId')}")
        elif method == "agent/registered":
            logger.info(f"Agent registered: {params.get('agentId')}")
        elif method == "task/created":
            logger.info(f"Task created: {params.get('taskId')} for {params.get('agentId')}")
        else:
            logger.debug(f"Server notification {method}: {params}")

    async def reconnect(self) -> bool:
        """Try to reconnect, waiting reconnect_delay * attempt before each try."""
        for attempt in range(1, self.max_reconnect_attempts + 1):
            await asyncio.sleep(self.reconnect_delay * attempt)
            logger.info(f"Reconnecting ({attempt}/{self.max_reconnect_attempts})...")
            try:
                await self.connect()
                return True
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Reconnection attempt {attempt} failed: {e}")

        logger.error("Max reconnection attempts reached")
        return False

    def _reconnect_finished(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Reconnection cancelled")
        elif task.exception() is not None:
            logger.error("Reconnection failed", exc_info=task.exception())
        elif task.result():
            logger.info("Reconnected to shared server")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
