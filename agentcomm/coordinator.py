"""Coordination engine: the session object behind every transport."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from agentcomm.errors import InvalidTransitionError, NotFoundError
from agentcomm.mailbox import DEFAULT_POLL_INTERVAL_MS, Mailbox, MailboxPoller
from agentcomm.relationships import RelationshipManager
from agentcomm.schemas import (
    AgentConfig,
    MailboxMessage,
    MessageType,
    RelationshipCategory,
    RelationshipStatus,
    Task,
    TaskState,
    TaskStatus,
    new_id,
    utc_now,
)
from agentcomm.store import AgentStore
from agentcomm.task_queue import TaskQueue

logger = logging.getLogger(__name__)


class Coordinator:
    """Owns the agent registry, the mailbox and the poller for one storage root.

    One instance is shared by every connection of a transport adapter.
    """

    def __init__(
        self,
        root: Path | str,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ):
        self.root = Path(root)
        self.agents: dict[str, AgentStore] = {}
        self.last_activity: dict[str, str] = {}
        self.mailbox = Mailbox(self.root)
        self.poller = MailboxPoller(self.agents, interval_ms=poll_interval_ms)

    # --- Lookups ---

    def store(self, agent_id: str) -> AgentStore:
        """Store of an existing agent namespace.

        Raises:
            NotFoundError: If the agent has never been registered under this root
        """
        return AgentStore(self.root, agent_id).require()

    def queue(self, agent_id: str) -> TaskQueue:
        return TaskQueue(self.store(agent_id))

    def relationships(self, agent_id: str) -> RelationshipManager:
        return RelationshipManager(self.store(agent_id))

    def _touch(self, agent_id: str) -> None:
        if agent_id in self.agents:
            self.last_activity[agent_id] = utc_now()

    # --- Agents ---

    def register(
        self,
        agent_id: str,
        capabilities: dict[str, Any] | None = None,
    ) -> tuple[AgentConfig, bool]:
        """Register an agent, or merge capabilities into an existing registration.

        Existing state is never reset: the namespace is initialized only where
        documents are missing and the original connect time is kept.

        Returns:
            Tuple of (config after the update, whether the agent already existed)
        """
        store = AgentStore(self.root, agent_id)
        existed = store.exists()

        store.initialize(capabilities)
        config = store.write_config(capabilities)

        self.agents[agent_id] = store
        self._touch(agent_id)

        action = "updated" if existed else "registered"
        logger.info(f"Agent {agent_id} {action} (registration #{config.registration_count})")
        return config, existed

    def agent_status(self, agent_id: str) -> dict[str, Any]:
        store = self.store(agent_id)
        queue = TaskQueue(store)
        registry = store.read_relationships()
        return {
            "agentId": agent_id,
            "connected": agent_id in self.agents,
            "tasks": queue.stats(),
            "pendingTasks": [t.to_dict() for t in queue.get(TaskState.PENDING)],
            "relationships": {
                "consumers": len(registry.consumers),
                "producers": len(registry.producers),
                "bidirectional": len(registry.bidirectional),
                "optional": len(registry.optional),
            },
            "registrationCount": store.read_config().registration_count,
            "lastActivity": self.last_activity.get(agent_id),
        }

    def system_status(self) -> dict[str, Any]:
        agent_ids = list(self.agents)
        return {
            "timestamp": utc_now(),
            "totalAgents": len(agent_ids),
            "connectedAgents": agent_ids,
            "agents": [self.agent_status(agent_id) for agent_id in agent_ids],
        }

    # --- Tasks ---

    def create_task(
        self,
        agent_id: str,
        task_data: dict[str, Any],
        created_by: str | None = None,
    ) -> Task:
        """Create a fresh pending task owned by agent_id.

        Raises:
            TaskValidationError: If the resulting task is malformed
        """
        queue = self.queue(agent_id)
        task = queue.enqueue(
            {
                **task_data,
                "id": new_id(),
                "status": TaskStatus.PENDING.value,
                "created_at": utc_now(),
                "updated_at": utc_now(),
                "agent_id": agent_id,
                "created_by": created_by or task_data.get("created_by") or agent_id,
            }
        )
        self._touch(agent_id)
        return task

    def get_tasks(self, agent_id: str, state: TaskState | str | None = None) -> Any:
        """Tasks of one collection, or every collection keyed by state name."""
        queue = self.queue(agent_id)
        if state is not None:
            return queue.get(TaskState(state))
        return {s.value: tasks for s, tasks in queue.all().items()}

    def get_task(self, agent_id: str, task_id: str) -> tuple[TaskState, Task]:
        found = self.queue(agent_id).find(task_id)
        if found is None:
            raise NotFoundError(f"Task {task_id} not found for agent {agent_id}")
        return found

    def request_task(
        self,
        from_agent_id: str,
        to_agent_id: str,
        task_request: dict[str, Any],
    ) -> tuple[MailboxMessage, Task]:
        """Send a task to another agent's mailbox; it is enqueued on the next poll tick.

        Raises:
            NotFoundError: If either agent is unknown
            TaskValidationError: If the derived task is malformed
        """
        self.store(from_agent_id)
        self.store(to_agent_id)

        task = Task.from_dict(
            {
                **task_request,
                "id": new_id(),
                "status": TaskStatus.PENDING.value,
                "created_at": utc_now(),
                "updated_at": utc_now(),
                "agent_id": to_agent_id,
                "created_by": from_agent_id,
                "target_agent_id": to_agent_id,
            }
        )
        message = self.mailbox.send_task_request(from_agent_id, to_agent_id, task)
        self._touch(from_agent_id)
        return message, task

    def update_task(
        self,
        agent_id: str,
        task_id: str,
        status: TaskStatus | str,
        deliverables: list[Any] | None = None,
        reason: str | None = None,
    ) -> Task:
        """Drive a task to the requested status through the queue state machine.

        Raises:
            NotFoundError: If the task does not exist
            InvalidTransitionError: If the status cannot be reached from where the task is
            DependencyUnmetError: If activation is needed and dependencies are open
        """
        status = TaskStatus(status)
        queue = self.queue(agent_id)
        state, task = self.get_task(agent_id, task_id)

        if status == TaskStatus.IN_PROGRESS:
            if state == TaskState.PENDING:
                task = queue.activate(task_id)
            elif state == TaskState.ACTIVE and task.status == TaskStatus.BLOCKED:
                task = queue.unblock(task_id)
            else:
                raise _invalid(task, state, status)
        elif status == TaskStatus.BLOCKED:
            if state == TaskState.ACTIVE and task.status == TaskStatus.IN_PROGRESS:
                task = queue.block(task_id, reason or "")
            else:
                raise _invalid(task, state, status)
        elif status == TaskStatus.COMPLETED:
            if state == TaskState.PENDING:
                queue.activate(task_id)
                task = queue.complete(task_id, deliverables)
            elif state == TaskState.ACTIVE and task.status == TaskStatus.IN_PROGRESS:
                task = queue.complete(task_id, deliverables)
            else:
                raise _invalid(task, state, status)
        else:
            raise _invalid(task, state, status)

        self._touch(agent_id)
        return task

    # --- Relationships ---

    def add_relationship(
        self,
        agent_id: str,
        target_agent_id: str,
        category: RelationshipCategory | str,
        subtype: str | None = None,
    ) -> bool:
        added = self.relationships(agent_id).add(target_agent_id, category, subtype)
        self._touch(agent_id)
        return added

    def remove_relationship(self, agent_id: str, target_agent_id: str) -> bool:
        return self.relationships(agent_id).remove(target_agent_id)

    def update_relationship(
        self,
        agent_id: str,
        target_agent_id: str,
        status: RelationshipStatus | str,
    ) -> bool:
        return self.relationships(agent_id).set_status(target_agent_id, status)

    # --- Context ---

    def get_context(self, agent_id: str) -> str:
        return self.store(agent_id).read_context()

    def update_context(self, agent_id: str, content: str) -> None:
        """Append an entry to the agent's context log."""
        self.store(agent_id).append_context(content)
        self._touch(agent_id)

    # --- Messaging ---

    def send_message(
        self,
        from_agent_id: str,
        to_agent_id: str,
        message_type: MessageType | str,
        data: dict[str, Any] | None = None,
    ) -> MailboxMessage:
        """Send a typed message. Only the seven mailbox message types are accepted."""
        message = self.mailbox.send(
            MailboxMessage(
                type=MessageType(message_type),
                from_agent_id=from_agent_id,
                to_agent_id=to_agent_id,
                payload=dict(data or {}),
            )
        )
        self._touch(from_agent_id)
        return message

    def poll(self) -> int:
        """Run one polling tick on demand."""
        return self.poller.tick()


def _invalid(task: Task, state: TaskState, status: TaskStatus) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Cannot move task {task.id} from {task.status.value} ({state.value}) to {status.value}"
    )
