"""File-namespace mailbox: message delivery and the polling cycle."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from agentcomm.schemas import MailboxMessage, MessageType, Task, TaskStatus
from agentcomm.store import AgentStore
from agentcomm.task_queue import TaskQueue

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1000

MessageHandler = Callable[[AgentStore, MailboxMessage], None]


class Mailbox:
    """Delivers messages between agent namespaces under one root."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def send(self, message: MailboxMessage) -> MailboxMessage:
        """Write the message to the sender's outgoing and the receiver's incoming namespace.

        The two writes are independent. If the second fails, the sender's copy
        stays behind and the error propagates.

        Raises:
            NotFoundError: If either agent namespace does not exist
        """
        sender = AgentStore(self.root, message.from_agent_id).require()
        receiver = AgentStore(self.root, message.to_agent_id).require()

        sender.write_outgoing(message)
        receiver.write_incoming(message)

        logger.info(
            f"Message {message.id} ({message.type.value}) sent from "
            f"{message.from_agent_id} to {message.to_agent_id}"
        )
        return message

    def send_task_request(self, from_agent_id: str, to_agent_id: str, task: Task) -> MailboxMessage:
        """Send a TASK_REQUEST whose payload is the task document."""
        return self.send(
            MailboxMessage(
                type=MessageType.TASK_REQUEST,
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                payload=task.to_dict(),
            )
        )

    def send_task_response(
        self,
        from_agent_id: str,
        to_agent_id: str,
        response_task: Task,
        original_task_id: str,
    ) -> MailboxMessage:
        return self.send(
            MailboxMessage(
                type=MessageType.TASK_RESPONSE,
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                payload={
                    "original_task_id": original_task_id,
                    "response_task_id": response_task.id,
                    "response_data": response_task.to_dict(),
                },
            )
        )

    def send_status_update(
        self,
        from_agent_id: str,
        to_agent_id: str,
        task_id: str,
        status: TaskStatus | str,
        details: dict[str, Any] | None = None,
    ) -> MailboxMessage:
        return self.send(
            MailboxMessage(
                type=MessageType.STATUS_UPDATE,
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                payload={
                    "task_id": task_id,
                    "status": TaskStatus(status).value,
                    "details": details or {},
                },
            )
        )


# --- Message handlers ---


def _details(message: MailboxMessage) -> str:
    return json.dumps(message.payload.get("details", message.payload))


def handle_task_request(store: AgentStore, message: MailboxMessage) -> None:
    """Enqueue the requested task on the receiver's queue."""
    data = {**message.payload, "agent_id": store.agent_id}
    task = TaskQueue(store).enqueue(data)
    store.append_context(f"Received task request: {task.title} from {message.from_agent_id}")


def handle_task_response(store: AgentStore, message: MailboxMessage) -> None:
    original = message.payload.get("original_task_id")
    store.append_context(
        f"Received task response for task {original} from {message.from_agent_id}"
    )


def handle_status_update(store: AgentStore, message: MailboxMessage) -> None:
    store.append_context(
        f"Status update for task {message.payload.get('task_id')}: "
        f"{message.payload.get('status')} from {message.from_agent_id}"
    )


def handle_dependency_notification(store: AgentStore, message: MailboxMessage) -> None:
    store.append_context(f"Dependency notification from {message.from_agent_id}: {_details(message)}")


def handle_integration_test(store: AgentStore, message: MailboxMessage) -> None:
    store.append_context(f"Integration test request from {message.from_agent_id}: {_details(message)}")


def handle_completion_notification(store: AgentStore, message: MailboxMessage) -> None:
    store.append_context(
        f"Task completion notification from {message.from_agent_id}: {_details(message)}"
    )


def handle_context_sync(store: AgentStore, message: MailboxMessage) -> None:
    store.append_context(f"Context sync from {message.from_agent_id}: {_details(message)}")


MESSAGE_HANDLERS: dict[MessageType, MessageHandler] = {
    MessageType.TASK_REQUEST: handle_task_request,
    MessageType.TASK_RESPONSE: handle_task_response,
    MessageType.STATUS_UPDATE: handle_status_update,
    MessageType.DEPENDENCY_NOTIFICATION: handle_dependency_notification,
    MessageType.INTEGRATION_TEST: handle_integration_test,
    MessageType.COMPLETION_NOTIFICATION: handle_completion_notification,
    MessageType.CONTEXT_SYNC: handle_context_sync,
}


# --- Polling cycle ---


class MailboxPoller:
    """Consumes every registered agent's incoming messages on a fixed interval.

    Delivery is at-most-once: a message is archived (or deleted) after its
    handler runs, whether or not the handler succeeded.
    """

    def __init__(
        self,
        agents: Mapping[str, AgentStore],
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        handlers: Mapping[MessageType, MessageHandler] | None = None,
    ):
        """
        Args:
            agents: Live mapping of registered agent id to store, read on every tick
            interval_ms: Delay between ticks
            handlers: Handler table override (defaults to MESSAGE_HANDLERS)
        """
        self.agents = agents
        self.interval = interval_ms / 1000
        self.handlers = dict(handlers or MESSAGE_HANDLERS)
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> int:
        """Process every waiting message of every registered agent, one agent at a time.

        Returns:
            Number of message files consumed
        """
        processed = 0
        for agent_id, store in list(self.agents.items()):
            try:
                processed += self.process_agent(store)
            except OSError:
                logger.error(f"Error reading incoming messages for agent {agent_id}", exc_info=True)
        return processed

    def process_agent(self, store: AgentStore) -> int:
        processed = 0
        for path in store.list_incoming():
            self._handle_file(store, path)
            self._archive(store, path)
            processed += 1
        return processed

    def _handle_file(self, store: AgentStore, path: Path) -> None:
        try:
            message = MailboxMessage.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.error(f"Unreadable message file {path.name} for agent {store.agent_id}", exc_info=True)
            return

        handler = self.handlers.get(message.type)
        if handler is None:
            logger.error(f"No handler for message type {message.type.value} (agent {store.agent_id})")
            return

        try:
            handler(store, message)
            logger.info(f"Message {message.id} processed by agent {store.agent_id}")
        except Exception:
            logger.error(f"Error handling message {message.id} for agent {store.agent_id}", exc_info=True)

    def _archive(self, store: AgentStore, path: Path) -> None:
        try:
            store.archive_incoming(path)
        except OSError:
            logger.error(f"Error archiving {path.name}; deleting it instead", exc_info=True)
            path.unlink(missing_ok=True)

    async def run(self) -> None:
        """Tick until stop() is requested. The stop flag is only checked between ticks."""
        logger.info(f"Mailbox polling started (interval {self.interval:.3f}s)")
        while not self._stop.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Mailbox polling stopped")

    def start(self) -> asyncio.Task:
        """Schedule the polling loop on the running event loop."""
        if self.running:
            return self._task
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Request a stop and wait for the in-flight tick to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

