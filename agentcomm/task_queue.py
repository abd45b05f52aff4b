"""Per-agent task queue over the pending, active and completed collections."""

from __future__ import annotations

import logging
from typing import Any

from agentcomm.errors import (
    DependencyUnmetError,
    InvalidTransitionError,
    NotFoundError,
    TaskValidationError,
)
from agentcomm.schemas import Task, TaskState, TaskStatus
from agentcomm.store import AgentStore

logger = logging.getLogger(__name__)

DEFAULT_COMPLETED_RETENTION = 100


class TaskQueue:
    """State machine moving an agent's tasks between its three collections.

    Each move is two separate writes (remove, then insert); there is no
    cross-file transaction.
    """

    def __init__(self, store: AgentStore):
        self.store = store

    @property
    def agent_id(self) -> str:
        return self.store.agent_id

    def enqueue(self, task: Task | dict[str, Any]) -> Task:
        """Validate a task and append it to the pending collection.

        Raises:
            TaskValidationError: Listing every violation at once, or if the id
                is already held by any collection
        """
        if isinstance(task, Task):
            task = task.to_dict()
        validated = Task.from_dict(task)

        existing = self.find(validated.id)
        if existing is not None:
            raise TaskValidationError(
                [f"Task ID {validated.id} already exists in {existing[0].value}"]
            )

        pending = self.store.read_tasks(TaskState.PENDING)
        pending.append(validated)
        self.store.write_tasks(TaskState.PENDING, pending)

        logger.info(f"Enqueued task {validated.id} for agent {self.agent_id}: {validated.title}")
        return validated

    def activate(self, task_id: str) -> Task:
        """Move a pending task to active once its dependencies are complete.

        Raises:
            NotFoundError: If the task is not pending
            DependencyUnmetError: If any dependency is not completed yet
        """
        pending = self.store.read_tasks(TaskState.PENDING)
        task = _find(pending, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found in pending queue")

        completed_ids = self.completed_ids()
        missing = [dep for dep in task.dependencies if dep not in completed_ids]
        if missing:
            raise DependencyUnmetError(task_id, missing)

        pending.remove(task)
        task.update_status(TaskStatus.IN_PROGRESS)

        self.store.write_tasks(TaskState.PENDING, pending)
        active = self.store.read_tasks(TaskState.ACTIVE)
        active.append(task)
        self.store.write_tasks(TaskState.ACTIVE, active)

        logger.info(f"Activated task {task_id} for agent {self.agent_id}")
        return task

    def complete(self, task_id: str, deliverables: list[Any] | None = None) -> Task:
        """Move an active task to completed, merging in new deliverables.

        Raises:
            NotFoundError: If the task is not active
        """
        active = self.store.read_tasks(TaskState.ACTIVE)
        task = _find(active, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found in active queue")

        active.remove(task)
        for deliverable in deliverables or []:
            task.add_deliverable(deliverable)
        task.update_status(TaskStatus.COMPLETED)

        self.store.write_tasks(TaskState.ACTIVE, active)
        completed = self.store.read_tasks(TaskState.COMPLETED)
        completed.append(task)
        self.store.write_tasks(TaskState.COMPLETED, completed)

        logger.info(f"Completed task {task_id} for agent {self.agent_id}")
        return task

    def block(self, task_id: str, reason: str = "") -> Task:
        """Mark an in-progress task blocked, in place within active."""
        return self._set_active_status(
            task_id,
            expected=TaskStatus.IN_PROGRESS,
            status=TaskStatus.BLOCKED,
            reason=reason,
        )

    def unblock(self, task_id: str) -> Task:
        """Return a blocked task to in progress and drop its block reason."""
        return self._set_active_status(
            task_id,
            expected=TaskStatus.BLOCKED,
            status=TaskStatus.IN_PROGRESS,
        )

    def _set_active_status(
        self,
        task_id: str,
        expected: TaskStatus,
        status: TaskStatus,
        reason: str | None = None,
    ) -> Task:
        active = self.store.read_tasks(TaskState.ACTIVE)
        task = _find(active, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found in active queue")
        if task.status != expected:
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status.value}, expected {expected.value}"
            )

        if status == TaskStatus.BLOCKED:
            task.metadata["blocked_reason"] = reason or ""
        else:
            task.metadata.pop("blocked_reason", None)
        task.update_status(status)
        self.store.write_tasks(TaskState.ACTIVE, active)

        logger.info(f"Task {task_id} for agent {self.agent_id} is now {status.value}")
        return task

    # --- Queries ---

    def get(self, state: TaskState) -> list[Task]:
        return self.store.read_tasks(state)

    def all(self) -> dict[TaskState, list[Task]]:
        return {state: self.store.read_tasks(state) for state in TaskState}

    def find(self, task_id: str) -> tuple[TaskState, Task] | None:
        """Locate a task and the collection currently holding it."""
        for state in TaskState:
            task = _find(self.store.read_tasks(state), task_id)
            if task is not None:
                return state, task
        return None

    def completed_ids(self) -> set[str]:
        return {task.id for task in self.store.read_tasks(TaskState.COMPLETED)}

    def ready(self) -> list[Task]:
        """Pending tasks whose dependencies are all completed."""
        completed_ids = self.completed_ids()
        return [t for t in self.store.read_tasks(TaskState.PENDING) if t.is_ready(completed_ids)]

    def stats(self) -> dict[str, int]:
        """Counts per collection plus blocked and ready totals."""
        tasks = self.all()
        completed_ids = {t.id for t in tasks[TaskState.COMPLETED]}
        return {
            "pending": len(tasks[TaskState.PENDING]),
            "active": len(tasks[TaskState.ACTIVE]),
            "completed": len(tasks[TaskState.COMPLETED]),
            "blocked": sum(1 for t in tasks[TaskState.ACTIVE] if t.status == TaskStatus.BLOCKED),
            "ready": sum(1 for t in tasks[TaskState.PENDING] if t.is_ready(completed_ids)),
        }

    def prune_completed(self, keep: int = DEFAULT_COMPLETED_RETENTION) -> int:
        """Keep only the most recently updated completed tasks.

        Returns:
            Number of tasks removed
        """
        completed = self.store.read_tasks(TaskState.COMPLETED)
        if len(completed) <= keep:
            return 0

        kept = sorted(completed, key=lambda t: t.updated_at, reverse=True)[:keep]
        self.store.write_tasks(TaskState.COMPLETED, kept)
        removed = len(completed) - len(kept)
        logger.info(f"Pruned {removed} completed tasks for agent {self.agent_id}")
        return removed


def _find(tasks: list[Task], task_id: str) -> Task | None:
    for task in tasks:
        if task.id == task_id:
            return task
    return None
