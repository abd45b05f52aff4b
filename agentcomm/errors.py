"""Domain errors raised by the coordination engine."""

from __future__ import annotations


class CoordinationError(Exception):
    """Base class for coordination failures."""

    pass


class TaskValidationError(CoordinationError):
    """Raised when a task document breaks one or more structural rules."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid task: {', '.join(self.errors)}")


class NotFoundError(CoordinationError):
    """Raised for an unknown agent, task, or method."""

    pass


class DependencyUnmetError(CoordinationError):
    """Raised when a task is activated before its dependencies complete."""

    def __init__(self, task_id: str, missing: list[str]):
        self.task_id = task_id
        self.missing = list(missing)
        super().__init__(
            f"Task {task_id} dependencies not met: {', '.join(self.missing)}"
        )


class InvalidTransitionError(CoordinationError):
    """Raised when a status change is not allowed from the task's current state."""

    pass
